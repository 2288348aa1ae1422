"""Playback synchronization over the control channel.

Local surface notifications become play/pause/seek/rate messages; remote
messages are applied to the local surface. Applying a remote command makes
the surface emit its own notifications, which would bounce straight back to
the peer; every applied command therefore opens a short window during which
local play/pause/seek notifications are dropped whatever their type. Rate
changes are always forwarded; re-applying an equal rate is a no-op on the
surface, so the echo stops after one round.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import parse_qs, urlparse

from ..clock import SYSTEM_CLOCK, Clock
from ..errors import InvalidVideoReference
from ..net import control
from ..net.control import PlayerState, number_field
from ..rtc.channel import ControlSender
from .surface import VideoSurface


logger = logging.getLogger(__name__)


SUPPRESS_WINDOW_SEC = 0.4
PEER_SETTLE_SEC = 0.5
DRIFT_TOLERANCE_SEC = 2.0

AsyncCallback = Callable[..., Awaitable[None]]


def parse_video_id(url_or_id: str) -> Optional[str]:
    """Accept youtu.be/<id>, youtube.com/watch?v=<id>, or a bare id."""
    value = (url_or_id or "").strip()
    parsed = urlparse(value)
    if parsed.scheme and parsed.netloc:
        host = (parsed.hostname or "").lower()
        if host == "youtu.be":
            return parsed.path.strip("/").split("/")[0] or None
        if "youtube.com" in host:
            return (parse_qs(parsed.query).get("v") or [None])[0]
        return None
    if len(value) >= 10:
        return value
    return None


class SyncEngine:
    def __init__(
        self,
        surface: VideoSurface,
        channel: ControlSender,
        clock: Clock = SYSTEM_CLOCK,
        *,
        suppress_window: float = SUPPRESS_WINDOW_SEC,
        settle_delay: float = PEER_SETTLE_SEC,
        drift_tolerance: float = DRIFT_TOLERANCE_SEC,
        on_log: Optional[AsyncCallback] = None,
    ):
        self.surface = surface
        self._channel = channel
        self._clock = clock
        self._suppress_window = suppress_window
        self._settle_delay = settle_delay
        self._drift_tolerance = drift_tolerance
        self._on_log = on_log

        self.suppress_until = 0.0

        surface.add_state_listener(self.on_local_state_change)
        surface.add_rate_listener(self.on_local_rate_change)

    @property
    def suppressed(self) -> bool:
        return self._clock.monotonic() < self.suppress_until

    @property
    def current_video_id(self) -> Optional[str]:
        return self.surface.get_video_data().get("video_id")

    # ----------------------
    # Outbound
    # ----------------------
    def on_local_state_change(self, state: PlayerState) -> None:
        if not self.surface.ready:
            return
        if self.suppressed:
            logger.debug("sync local state suppressed state=%s", state)
            return

        if state == PlayerState.PLAYING:
            mtype = control.PLAY
        elif state == PlayerState.PAUSED:
            mtype = control.PAUSE
        elif state == PlayerState.BUFFERING:
            # Usually the user dragged the seek bar; broadcast the new position.
            mtype = control.SEEK
        else:
            return
        self._channel.send(control.make_playback(mtype, self.surface.get_current_time(), self._clock.now_ms()))

    def on_local_rate_change(self, _rate: float) -> None:
        if not self.surface.ready:
            return
        self._channel.send(control.make_rate(self.surface.get_playback_rate(), self._clock.now_ms()))

    # ----------------------
    # Local user actions
    # ----------------------
    def load_video(self, url_or_id: str) -> bool:
        """Load locally and tell the peer; a no-op when the id is already loaded."""
        video_id = parse_video_id(url_or_id)
        if not video_id:
            raise InvalidVideoReference(f"not a YouTube URL or id: {url_or_id!r}")
        if not self.surface.ready:
            logger.info("sync load refused reason=surface-not-ready")
            return False
        if video_id == self.current_video_id:
            logger.info("sync load skipped video_id=%s reason=already-loaded", video_id)
            return False
        self.surface.load_video_by_id(video_id)
        self._channel.send(control.make_load(video_id, 0, self._clock.now_ms()))
        logger.info("sync load video_id=%s", video_id)
        return True

    def request_sync(self) -> None:
        """Ask the peer for its snapshot; raises ChannelNotReady when offline."""
        self._channel.require_open()
        self._channel.send(control.make_request_sync(self._clock.now_ms()))
        logger.info("sync requested snapshot from peer")

    def snapshot(self) -> Dict[str, Any]:
        return control.make_sync_state(
            self.current_video_id,
            self.surface.get_player_state(),
            self.surface.get_current_time(),
            self.surface.get_playback_rate(),
            self._clock.now_ms(),
        )

    async def announce_to_new_peer(self) -> bool:
        """After a peer joins, push our snapshot if there is something to catch up on."""
        await asyncio.sleep(self._settle_delay)
        if not self.surface.ready:
            return False
        video_id = self.current_video_id
        if not video_id:
            await self._log("Peer joined. Load a video to start syncing.")
            return False
        position = self.surface.get_current_time()
        if position > self._drift_tolerance or self.surface.get_player_state() == PlayerState.PLAYING:
            return self._channel.send(self.snapshot())
        return False

    # ----------------------
    # Inbound
    # ----------------------
    def handle_message(self, msg: Dict[str, Any]) -> None:
        mtype = msg.get("type")
        time = number_field(msg, "time")

        if mtype == control.LOAD:
            video_id = msg.get("videoId")
            if not isinstance(video_id, str) or not video_id:
                logger.debug("sync load ignored reason=missing-videoId")
                return
            self._open_suppression()
            self.surface.load_video_by_id(video_id)
            if time is not None:
                self.surface.seek_to(time, True)
        elif mtype == control.PLAY:
            self._open_suppression()
            if time is not None:
                self.surface.seek_to(time, True)
            self.surface.play_video()
        elif mtype == control.PAUSE:
            self._open_suppression()
            if time is not None:
                self.surface.seek_to(time, True)
            self.surface.pause_video()
        elif mtype == control.SEEK:
            self._open_suppression()
            if time is not None:
                self.surface.seek_to(time, True)
        elif mtype == control.RATE:
            self._open_suppression()
            rate = number_field(msg, "rate")
            if rate is not None:
                self.surface.set_playback_rate(rate)
        elif mtype == control.REQUEST_SYNC:
            self._channel.send(self.snapshot())
        elif mtype == control.SYNC_STATE:
            self._open_suppression()
            self._apply_snapshot(msg, time)
        else:
            return
        logger.debug("sync applied type=%s", mtype)

    def _apply_snapshot(self, msg: Dict[str, Any], time: Optional[float]) -> None:
        video_id = msg.get("videoId")
        if isinstance(video_id, str) and video_id and video_id != self.current_video_id:
            self.surface.load_video_by_id(video_id)

        if time is not None and abs(self.surface.get_current_time() - time) > self._drift_tolerance:
            self.surface.seek_to(time, True)

        rate = number_field(msg, "rate")
        if rate is not None:
            self.surface.set_playback_rate(rate)

        state = msg.get("state")
        if isinstance(state, bool):
            return
        if state == PlayerState.PLAYING:
            self.surface.play_video()
        elif state == PlayerState.PAUSED:
            self.surface.pause_video()

    def _open_suppression(self) -> None:
        self.suppress_until = self._clock.monotonic() + self._suppress_window

    async def _log(self, message: str) -> None:
        if self._on_log:
            await self._on_log(message)
