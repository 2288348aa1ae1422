"""Per-room client context.

A RoomSession exists from a successful join until leave/disconnect and owns
everything tied to that room: the negotiation controller, the control and
chat channels, and the sync and call engines. Nothing here is process-global.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from aiortc.rtcconfiguration import RTCConfiguration

from .call.engine import CallCallbacks, CallEngine, DecisionCallback
from .chat import ChatChannel
from .clock import SYSTEM_CLOCK, Clock
from .net import control
from .rtc.channel import JsonChannel
from .rtc.media import CaptureProvider, RemoteMediaSink
from .rtc.negotiation import (
    CONTROL_LABEL,
    NegotiationCallbacks,
    NegotiationController,
    PeerFactory,
    RelaySignaling,
)
from .sync.engine import SyncEngine
from .sync.surface import VideoSurface


logger = logging.getLogger(__name__)


AsyncCallback = Callable[..., Awaitable[None]]


@dataclass
class SessionCallbacks:
    on_log: Optional[AsyncCallback] = None  # (msg: str)
    on_chat: Optional[AsyncCallback] = None  # (msg: ChatMessage)
    on_call_state: Optional[AsyncCallback] = None  # (state: CallState)
    on_call_duration: Optional[AsyncCallback] = None  # (seconds: int)
    on_negotiation_state: Optional[AsyncCallback] = None  # (state: NegotiationState)


class RoomSession:
    def __init__(
        self,
        room_id: str,
        signaling: RelaySignaling,
        surface: VideoSurface,
        capture: CaptureProvider,
        decide: DecisionCallback,
        *,
        clock: Clock = SYSTEM_CLOCK,
        callbacks: Optional[SessionCallbacks] = None,
        rtc_config: Optional[RTCConfiguration] = None,
        peer_factory: Optional[PeerFactory] = None,
        remote_sink: Optional[RemoteMediaSink] = None,
    ):
        self.room_id = room_id
        self._callbacks = callbacks or SessionCallbacks()
        self._tasks: set[asyncio.Task[Any]] = set()

        self.control = JsonChannel(CONTROL_LABEL, on_message=self.dispatch_control, on_state=self._on_control_state)
        self.chat = ChatChannel(clock, on_message=self._callbacks.on_chat, on_state=self._on_chat_state)
        self.negotiation = NegotiationController(
            signaling,
            callbacks=NegotiationCallbacks(
                on_log=self._log,
                on_state=self._callbacks.on_negotiation_state,
                on_control_channel=self._bind_control,
                on_chat_channel=self._bind_chat,
                on_remote_track=self._on_remote_track,
            ),
            rtc_config=rtc_config,
            peer_factory=peer_factory,
        )
        self.sync = SyncEngine(surface, self.control, clock, on_log=self._log)
        self.call = CallEngine(
            self.control,
            self.negotiation,
            capture,
            decide,
            clock=clock,
            callbacks=CallCallbacks(
                on_log=self._log,
                on_state=self._callbacks.on_call_state,
                on_duration=self._callbacks.on_call_duration,
            ),
            remote_sink=remote_sink,
        )

    async def open(self, initiator: bool) -> None:
        logger.info("session open room=%s initiator=%s", self.room_id, initiator)
        await self.negotiation.start(initiator)

    async def reconnect(self) -> None:
        """Rebuild the peer connection; channels rebind once the new ones appear."""
        await self.call.end_call()
        self.control.unbind()
        self.chat.unbind()
        await self.negotiation.reconnect()

    async def close(self) -> None:
        logger.info("session close room=%s", self.room_id)
        for task in list(self._tasks):
            task.cancel()
        await self.call.end_call()
        self.control.unbind()
        self.chat.unbind()
        await self.negotiation.close()

    # ----------------------
    # Coordinator events
    # ----------------------
    async def on_peer_joined(self) -> None:
        await self._log("Peer joined the room.")
        self._spawn(self.sync.announce_to_new_peer(), name="sync-announce")

    async def on_peer_disconnected(self) -> None:
        await self._log("Peer disconnected. Will attempt to reconnect when they return.")
        await self.call.handle_peer_left()
        self.control.unbind()
        self.chat.unbind()
        await self.negotiation.reset_for_new_peer()

    async def on_offer(self, description: Dict[str, Any]) -> None:
        await self.negotiation.handle_offer(description)

    async def on_answer(self, description: Dict[str, Any]) -> None:
        await self.negotiation.handle_answer(description)

    async def on_candidate(self, candidate: Any) -> None:
        await self.negotiation.handle_candidate(candidate)

    # ----------------------
    # Control channel
    # ----------------------
    async def dispatch_control(self, msg: Dict[str, Any]) -> None:
        mtype = msg.get("type")
        # Call signaling must work before any video is loaded.
        if mtype in control.CALL_TYPES:
            await self.call.handle_message(msg)
            return
        if not self.sync.surface.ready:
            logger.debug("session control dropped type=%s reason=surface-not-ready", mtype)
            return
        if mtype in control.SYNC_TYPES:
            self.sync.handle_message(msg)
            return
        logger.debug("session control ignored type=%s", mtype)

    async def _bind_control(self, channel: Any) -> None:
        self.control.bind(channel)

    async def _bind_chat(self, channel: Any) -> None:
        self.chat.bind(channel)

    async def _on_control_state(self, is_open: bool) -> None:
        if is_open:
            await self._log("Control channel open. Video sync ready!")
        else:
            await self._log("Control channel closed.")

    async def _on_chat_state(self, is_open: bool) -> None:
        await self._log("Chat channel open. Ready to chat!" if is_open else "Chat channel closed.")

    async def _on_remote_track(self, track: Any) -> None:
        await self.call.handle_remote_track(track)

    def _spawn(self, coro: Awaitable[Any], name: str) -> None:
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _log(self, message: str) -> None:
        if self._callbacks.on_log:
            await self._callbacks.on_log(message)
