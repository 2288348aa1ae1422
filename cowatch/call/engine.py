"""Call lifecycle over the control channel.

Caller:  idle -> calling -> connected -> idle
Callee:  idle -> receiving -> connected | idle

Media tracks are attached only after the callee accepts (the caller then
renegotiates), so a declined call never exposes the caller's devices to the
peer connection. Every await (capture, user decision, renegotiation) may
resolve after the call already ended; results that arrive for a call that is
no longer current are discarded and any captured stream is released.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Protocol

from ..clock import SYSTEM_CLOCK, Clock
from ..errors import CaptureDeviceFailure, NegotiationFailure
from ..net import control
from ..rtc.channel import ControlSender
from ..rtc.media import CaptureProvider, LocalMedia, RemoteMediaSink


logger = logging.getLogger(__name__)


AsyncCallback = Callable[..., Awaitable[None]]
DecisionCallback = Callable[[bool], Awaitable[bool]]  # (has_video) -> accept?


class CallState(str, Enum):
    IDLE = "idle"
    CALLING = "calling"
    RECEIVING = "receiving"
    CONNECTED = "connected"


class MediaAttacher(Protocol):
    def add_tracks(self, tracks: Iterable[Any]) -> int: ...

    async def renegotiate(self) -> None: ...


@dataclass
class CallSession:
    has_video: bool
    local_media: Optional[LocalMedia] = None
    remote_tracks: list = field(default_factory=list)
    audio_muted: bool = False
    video_enabled: bool = True
    started_at: Optional[float] = None


@dataclass
class CallCallbacks:
    on_log: Optional[AsyncCallback] = None  # (msg: str)
    on_state: Optional[AsyncCallback] = None  # (state: CallState)
    on_duration: Optional[AsyncCallback] = None  # (seconds: int)


class CallEngine:
    def __init__(
        self,
        channel: ControlSender,
        negotiation: MediaAttacher,
        capture: CaptureProvider,
        decide: DecisionCallback,
        clock: Clock = SYSTEM_CLOCK,
        callbacks: Optional[CallCallbacks] = None,
        remote_sink: Optional[RemoteMediaSink] = None,
        tick_interval: float = 1.0,
    ):
        self._channel = channel
        self._negotiation = negotiation
        self._capture = capture
        self._decide = decide
        self._clock = clock
        self._callbacks = callbacks or CallCallbacks()
        self._remote_sink = remote_sink or RemoteMediaSink()
        self._tick_interval = tick_interval

        self._state = CallState.IDLE
        self._session: Optional[CallSession] = None
        self._epoch = 0
        self._timer_task: Optional[asyncio.Task[None]] = None

    @property
    def state(self) -> CallState:
        return self._state

    @property
    def session(self) -> Optional[CallSession]:
        return self._session

    @property
    def duration(self) -> float:
        session = self._session
        if session is None or session.started_at is None:
            return 0.0
        return self._clock.monotonic() - session.started_at

    async def start_call(self, has_video: bool) -> bool:
        if self._state is not CallState.IDLE:
            await self._log("Cannot start call: already in call.")
            return False
        self._channel.require_open()

        epoch = await self._begin(CallState.CALLING, has_video)
        try:
            media = await self._capture.acquire(has_video)
        except CaptureDeviceFailure as e:
            logger.warning("call capture failed role=caller error=%s", e)
            if self._owns(epoch, CallState.CALLING):
                await self._log("Failed to access camera/microphone. Please check permissions.")
                await self.end_call()
            return False
        if not self._owns(epoch, CallState.CALLING):
            logger.info("call capture resolved after hangup; releasing")
            media.stop()
            return False

        assert self._session is not None
        self._session.local_media = media
        self._channel.send(control.make_call_offer(has_video, self._clock.now_ms()))
        await self._log(f"{'Video' if has_video else 'Audio'} call initiated...")
        return True

    async def end_call(self) -> None:
        """Release everything; tell the peer only if a call was in progress."""
        prior = self._state
        self._state = CallState.IDLE
        session, self._session = self._session, None
        self._stop_timer()

        if session is not None:
            if session.local_media is not None:
                session.local_media.stop()
            session.remote_tracks.clear()
        await self._remote_sink.stop()

        if prior is CallState.IDLE:
            return
        self._channel.send(control.make_call_hangup(self._clock.now_ms()))
        logger.info("call ended prior=%s", prior.value)
        await self._notify_state()
        await self._log("Call ended.")

    def toggle_mute(self) -> bool:
        """Flip the local microphone; returns the new muted flag."""
        session = self._session
        if session is None or session.local_media is None or session.local_media.audio is None:
            return False
        session.audio_muted = not session.audio_muted
        session.local_media.audio.enabled = not session.audio_muted
        logger.info("call audio muted=%s", session.audio_muted)
        return session.audio_muted

    def toggle_camera(self) -> bool:
        """Flip the local camera; returns the new enabled flag."""
        session = self._session
        if session is None or session.local_media is None or session.local_media.video is None:
            return False
        session.video_enabled = not session.video_enabled
        session.local_media.video.enabled = session.video_enabled
        logger.info("call video enabled=%s", session.video_enabled)
        return session.video_enabled

    async def handle_remote_track(self, track: Any) -> None:
        if self._session is not None:
            self._session.remote_tracks.append(track)
        else:
            logger.debug("call remote track outside a call kind=%s", getattr(track, "kind", None))
        await self._remote_sink.add_track(track)
        await self._log("Receiving peer media...")

    async def handle_peer_left(self) -> None:
        if self._state is not CallState.IDLE:
            await self.end_call()

    async def handle_message(self, msg: Dict[str, Any]) -> None:
        mtype = msg.get("type")
        if mtype == control.CALL_OFFER:
            await self._on_offer(msg)
        elif mtype == control.CALL_ANSWER:
            await self._on_answer(msg)
        elif mtype == control.CALL_HANGUP:
            if self._state is not CallState.IDLE:
                await self._log("Call ended by peer.")
                await self.end_call()

    async def _on_offer(self, msg: Dict[str, Any]) -> None:
        if self._state is not CallState.IDLE:
            logger.info("call offer ignored state=%s", self._state.value)
            return
        has_video = msg.get("hasVideo") is True
        epoch = await self._begin(CallState.RECEIVING, has_video)
        await self._log(f"Incoming {'video' if has_video else 'audio'} call...")

        try:
            accept = await self._decide(has_video)
        except Exception:
            logger.exception("call decision callback failed")
            accept = False
        if not self._owns(epoch, CallState.RECEIVING):
            logger.info("call decision discarded (call no longer pending)")
            return

        if accept:
            await self._accept(epoch, has_video)
        else:
            await self._reject()

    async def _accept(self, epoch: int, has_video: bool) -> None:
        try:
            media = await self._capture.acquire(has_video)
        except CaptureDeviceFailure as e:
            logger.warning("call capture failed role=callee error=%s", e)
            if self._owns(epoch, CallState.RECEIVING):
                await self._log("Failed to access camera/microphone. Declining call.")
                await self._reject()
            return
        if not self._owns(epoch, CallState.RECEIVING):
            logger.info("call capture resolved after hangup; releasing")
            media.stop()
            return

        assert self._session is not None
        self._session.local_media = media
        try:
            self._negotiation.add_tracks(media.tracks)
        except NegotiationFailure as e:
            logger.warning("call attach failed role=callee error=%s", e)
            await self._reject()
            return
        self._channel.send(control.make_call_answer(True, self._clock.now_ms()))
        await self._connect()

    async def _reject(self) -> None:
        self._channel.send(control.make_call_answer(False, self._clock.now_ms()))
        await self.end_call()

    async def _on_answer(self, msg: Dict[str, Any]) -> None:
        if self._state is not CallState.CALLING:
            logger.debug("call answer ignored state=%s", self._state.value)
            return
        if msg.get("accepted") is not True:
            await self._log("Call was declined.")
            await self.end_call()
            return

        assert self._session is not None
        media = self._session.local_media
        epoch = self._epoch
        await self._connect()
        if media is None:
            return
        try:
            self._negotiation.add_tracks(media.tracks)
            await self._negotiation.renegotiate()
        except NegotiationFailure as e:
            logger.warning("call renegotiation failed error=%s", e)
            if self._owns(epoch, CallState.CONNECTED):
                await self._log("Could not send media to peer.")

    async def _begin(self, state: CallState, has_video: bool) -> int:
        self._epoch += 1
        self._session = CallSession(has_video=has_video)
        self._state = state
        logger.info("call state=%s has_video=%s", state.value, has_video)
        await self._notify_state()
        return self._epoch

    def _owns(self, epoch: int, state: CallState) -> bool:
        return epoch == self._epoch and self._state is state

    async def _connect(self) -> None:
        assert self._session is not None
        self._state = CallState.CONNECTED
        self._session.started_at = self._clock.monotonic()
        self._stop_timer()
        self._timer_task = asyncio.create_task(self._tick(), name="call-duration")
        logger.info("call state=connected")
        await self._notify_state()
        await self._log("Call connected!")

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self._tick_interval)
            if self._callbacks.on_duration:
                await self._callbacks.on_duration(int(self.duration))

    def _stop_timer(self) -> None:
        if self._timer_task is not None:
            self._timer_task.cancel()
            self._timer_task = None

    async def _notify_state(self) -> None:
        if self._callbacks.on_state:
            await self._callbacks.on_state(self._state)

    async def _log(self, message: str) -> None:
        if self._callbacks.on_log:
            await self._callbacks.on_log(message)
