"""Local capture and remote sinks for calls.

- Open microphone (and optionally camera) through aiortc's MediaPlayer.
- Wrap local tracks so mute/camera-off can be toggled without renegotiation.
- Consume remote tracks (record to file if configured, else discard).
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from dataclasses import dataclass, field
from functools import partial
from typing import Any, List, Optional, Protocol, Tuple

import av
from av.error import FFmpegError
from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRecorder

from ..clock import SYSTEM_CLOCK, Clock
from ..config import CaptureDevice, MediaConfig
from ..errors import CaptureDeviceFailure


logger = logging.getLogger(__name__)


VIDEO_OPTIONS = {"video_size": "640x480", "framerate": "30"}


class SwitchableTrack(MediaStreamTrack):
	"""Pass-through track with an `enabled` switch.

	While disabled, audio frames are replaced by silence and video frames by
	black frames of the same geometry; the RTP stream itself keeps flowing.
	"""

	def __init__(self, source: MediaStreamTrack):
		super().__init__()
		self.kind = source.kind
		self.enabled = True
		self._source = source

	async def recv(self):  # type: ignore[override]
		frame = await self._source.recv()
		if self.enabled:
			return frame
		if isinstance(frame, av.AudioFrame):
			return _silent_like(frame)
		if isinstance(frame, av.VideoFrame):
			return _black_like(frame)
		return frame

	def stop(self) -> None:  # type: ignore[override]
		try:
			self._source.stop()
		finally:
			super().stop()


def _silent_like(frame: av.AudioFrame) -> av.AudioFrame:
	out = av.AudioFrame(format=frame.format.name, layout=frame.layout.name, samples=frame.samples)
	for plane in out.planes:
		plane.update(bytes(plane.buffer_size))
	out.pts = frame.pts
	out.sample_rate = frame.sample_rate
	out.time_base = frame.time_base
	return out


def _black_like(frame: av.VideoFrame) -> av.VideoFrame:
	out = av.VideoFrame(frame.width, frame.height, "yuv420p")
	# yuv420p black: Y=16, U=V=128
	for i, plane in enumerate(out.planes):
		plane.update(bytes([16 if i == 0 else 128]) * plane.buffer_size)
	out.pts = frame.pts
	out.time_base = frame.time_base
	return out


@dataclass
class LocalMedia:
	"""Owns the capture players so their tracks stay alive."""

	audio: Optional[SwitchableTrack] = None
	video: Optional[SwitchableTrack] = None
	players: List[MediaPlayer] = field(default_factory=list)

	@property
	def tracks(self) -> list[SwitchableTrack]:
		return [t for t in (self.audio, self.video) if t is not None]

	def stop(self) -> None:
		"""Stop every track; MediaPlayer shuts its reader down once its tracks stop."""
		tracks = self.tracks
		self.audio = None
		self.video = None
		self.players = []
		for t in tracks:
			try:
				t.stop()
			except Exception:
				logger.debug("local media track stop failed kind=%s", t.kind, exc_info=True)


class CaptureProvider(Protocol):
	async def acquire(self, has_video: bool) -> LocalMedia: ...


def _default_audio_inputs() -> list[CaptureDevice]:
	if sys.platform == "darwin":
		return [CaptureDevice("none:default", "avfoundation")]
	if sys.platform.startswith("win"):
		return []
	# PulseAudio is typical on desktop Linux, ALSA otherwise
	return [CaptureDevice("default", "pulse"), CaptureDevice("default", "alsa")]


def _default_video_inputs() -> list[CaptureDevice]:
	if sys.platform == "darwin":
		return [CaptureDevice("default:none", "avfoundation")]
	if sys.platform.startswith("win"):
		return []
	return [CaptureDevice("/dev/video0", "v4l2")]


def _try_create_player(
	candidates: list[CaptureDevice],
	options: Optional[dict] = None,
) -> Tuple[Optional[MediaPlayer], Optional[CaptureDevice]]:
	"""Open the first candidate that works."""
	for cand in candidates:
		try:
			player = MediaPlayer(cand.device, format=cand.backend, options=options or {})
			return player, cand
		except (FFmpegError, OSError, ValueError) as e:
			logger.debug("capture open failed device=%s backend=%s error=%s", cand.device, cand.backend, e)
	return None, None


class MediaPlayerCapture:
	"""CaptureProvider backed by ffmpeg devices."""

	def __init__(self, config: Optional[MediaConfig] = None):
		self._config = config or MediaConfig.from_env()

	async def acquire(self, has_video: bool) -> LocalMedia:
		# Opening ffmpeg devices blocks; keep the event loop responsive.
		loop = asyncio.get_running_loop()
		return await loop.run_in_executor(None, partial(self._open, has_video))

	def _open(self, has_video: bool) -> LocalMedia:
		audio_candidates = [self._config.audio] if self._config.audio else _default_audio_inputs()
		audio_player, audio_dev = _try_create_player(audio_candidates)
		if audio_player is None or audio_player.audio is None:
			raise CaptureDeviceFailure("microphone unavailable")
		media = LocalMedia(audio=SwitchableTrack(audio_player.audio), players=[audio_player])
		logger.info("capture audio device=%s backend=%s", audio_dev.device, audio_dev.backend)

		if has_video:
			video_candidates = [self._config.video] if self._config.video else _default_video_inputs()
			video_player, video_dev = _try_create_player(video_candidates, VIDEO_OPTIONS)
			if video_player is None or video_player.video is None:
				media.stop()
				raise CaptureDeviceFailure("camera unavailable")
			media.video = SwitchableTrack(video_player.video)
			media.players.append(video_player)
			logger.info("capture video device=%s backend=%s", video_dev.device, video_dev.backend)
		return media


class RemoteMediaSink:
	"""Consumes remote call tracks.

	With a record path each track goes to `<stem>-<call ms>-<kind><ext>`, where
	the call stamp is taken when the first track of a call arrives; otherwise the
	frames are pulled and discarded so the receiver doesn't stall.
	"""

	def __init__(self, record_path: Optional[str] = None, clock: Clock = SYSTEM_CLOCK):
		self._record_path = record_path
		self._clock = clock
		self._sinks: list[Any] = []
		self._call_stamp: Optional[int] = None

	def target_for(self, kind: str) -> Optional[str]:
		if not self._record_path:
			return None
		if self._call_stamp is None:
			self._call_stamp = self._clock.now_ms()
		stem, ext = os.path.splitext(self._record_path)
		return f"{stem}-{self._call_stamp}-{kind}{ext or '.mp4'}"

	async def add_track(self, track: MediaStreamTrack) -> None:
		sink: Any
		target = self.target_for(track.kind)
		if target:
			sink = MediaRecorder(target)
			logger.info("remote media sink=%s kind=%s", target, track.kind)
		else:
			sink = MediaBlackhole()
			logger.info("remote media sink=blackhole kind=%s", track.kind)
		sink.addTrack(track)
		await sink.start()
		self._sinks.append(sink)

	async def stop(self) -> None:
		sinks, self._sinks = self._sinks, []
		self._call_stamp = None
		for sink in sinks:
			try:
				await sink.stop()
			except Exception:
				logger.debug("remote media sink stop failed", exc_info=True)
