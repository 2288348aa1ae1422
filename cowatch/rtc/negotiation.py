"""Negotiation controller: owns the single peer connection of a room session."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Protocol

from aiortc.rtcconfiguration import RTCConfiguration

from ..errors import NegotiationFailure
from ..net.protocol import IceCandidateDict, SessionDescriptionDict
from .webrtc_peer import PeerCallbacks, WebRTCPeer


logger = logging.getLogger(__name__)


AsyncCallback = Callable[..., Awaitable[None]]

CONTROL_LABEL = "control"
CHAT_LABEL = "chat"

RESTART_COOLDOWN_SEC = 1.5


class NegotiationState(str, Enum):
    IDLE = "idle"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    FAILED = "failed"
    DISCONNECTED = "disconnected"


class RelaySignaling(Protocol):
    async def send_offer(self, description: SessionDescriptionDict) -> None: ...

    async def send_answer(self, description: SessionDescriptionDict) -> None: ...

    async def send_candidate(self, candidate: IceCandidateDict) -> None: ...


PeerFactory = Callable[[PeerCallbacks, Optional[RTCConfiguration]], WebRTCPeer]


@dataclass
class NegotiationCallbacks:
    on_log: Optional[AsyncCallback] = None  # (msg: str)
    on_state: Optional[AsyncCallback] = None  # (state: NegotiationState)
    on_control_channel: Optional[AsyncCallback] = None  # (channel)
    on_chat_channel: Optional[AsyncCallback] = None  # (channel)
    on_remote_track: Optional[AsyncCallback] = None  # (track)


class NegotiationController:
    def __init__(
        self,
        signaling: RelaySignaling,
        callbacks: Optional[NegotiationCallbacks] = None,
        rtc_config: Optional[RTCConfiguration] = None,
        peer_factory: Optional[PeerFactory] = None,
        restart_cooldown: float = RESTART_COOLDOWN_SEC,
    ):
        self._signaling = signaling
        self._callbacks = callbacks or NegotiationCallbacks()
        self._rtc_config = rtc_config
        self._peer_factory: PeerFactory = peer_factory or (lambda cb, cfg: WebRTCPeer(callbacks=cb, rtc_config=cfg))
        self._restart_cooldown = restart_cooldown

        self._peer: Optional[WebRTCPeer] = None
        self._generation = 0
        self._initiator = False
        self._state = NegotiationState.IDLE
        self._pending_candidates: list[Dict[str, Any]] = []

        self._restarting = False
        self._restart_timer: Optional[asyncio.TimerHandle] = None

    @property
    def state(self) -> NegotiationState:
        return self._state

    @property
    def initiator(self) -> bool:
        return self._initiator

    @property
    def restart_in_flight(self) -> bool:
        return self._restarting

    @property
    def peer(self) -> Optional[WebRTCPeer]:
        return self._peer

    async def start(self, initiator: bool) -> None:
        """Create a fresh session; the initiator opens channels and offers."""
        self._initiator = initiator
        await self._create_peer()
        logger.info("rtc session start initiator=%s", initiator)
        if not initiator:
            await self._set_state(NegotiationState.IDLE)
            return

        assert self._peer is not None
        control = self._peer.create_data_channel(CONTROL_LABEL)
        chat = self._peer.create_data_channel(CHAT_LABEL)
        if self._callbacks.on_control_channel:
            await self._callbacks.on_control_channel(control)
        if self._callbacks.on_chat_channel:
            await self._callbacks.on_chat_channel(chat)

        await self._set_state(NegotiationState.NEGOTIATING)
        await self._log("Creating offer...")
        try:
            await self._send_offer()
        except NegotiationFailure as e:
            logger.warning("rtc initial offer failed: %s", e)
            await self._log("Could not send offer to peer.")

    async def reconnect(self) -> None:
        """Manual reconnect: tear down and recreate with the same role."""
        await self._log("Reconnecting peer connection...")
        await self.start(self._initiator)

    async def reset_for_new_peer(self) -> None:
        """The remote participant left; the next arrival will offer to us."""
        await self.start(False)

    async def close(self) -> None:
        self._cancel_restart_timer()
        await self._close_peer()
        await self._set_state(NegotiationState.IDLE)

    async def handle_offer(self, description: Dict[str, Any]) -> None:
        if self._peer is None:
            await self._create_peer()
        peer = self._peer
        assert peer is not None

        if peer.signaling_state == "have-local-offer":
            if self._initiator:
                logger.info("rtc offer ignored (local offer outstanding)")
                return
            # No rollback in aiortc: the initiator's offer wins, so drop ours with the peer.
            logger.warning("rtc offer collision; rebuilding peer to answer")
            await self._create_peer()
            peer = self._peer
            assert peer is not None

        if self._state is NegotiationState.IDLE:
            await self._set_state(NegotiationState.NEGOTIATING)
        try:
            answer = await peer.apply_offer_and_create_answer(description)
        except Exception as e:
            logger.warning("rtc offer apply failed: %s", e)
            await self._log("Error handling peer offer.")
            return
        if peer is not self._peer:
            return
        await self._flush_pending_candidates()
        logger.info("rtc answer created sdp_len=%s", len(answer["sdp"]))
        try:
            await self._relay("answer", self._signaling.send_answer, answer)
        except NegotiationFailure as e:
            logger.warning("rtc answer not sent: %s", e)
            await self._log("Could not send answer to peer.")

    async def handle_answer(self, description: Dict[str, Any]) -> None:
        peer = self._peer
        if peer is None or peer.signaling_state != "have-local-offer":
            logger.debug(
                "rtc answer ignored state=%s",
                peer.signaling_state if peer is not None else None,
            )
            return
        try:
            await peer.apply_answer(description)
        except Exception as e:
            logger.warning("rtc answer apply failed: %s", e)
            return
        await self._flush_pending_candidates()

    async def handle_candidate(self, candidate: Any) -> None:
        if not candidate:
            return
        peer = self._peer
        if peer is None or not peer.has_remote_description:
            self._pending_candidates.append(candidate)
            logger.debug("rtc candidate queued pending=%s", len(self._pending_candidates))
            return
        await self._apply_candidate(peer, candidate)

    def add_tracks(self, tracks: Iterable[Any]) -> int:
        peer = self._peer
        if peer is None:
            raise NegotiationFailure("no active peer connection")
        count = 0
        for track in tracks:
            peer.add_track(track)
            count += 1
        logger.info("rtc tracks attached count=%s senders=%s", count, len(peer.senders()))
        return count

    async def renegotiate(self) -> None:
        """New offer carrying tracks attached since the last round."""
        await self._log("Renegotiating media...")
        await self._send_offer()

    async def restart(self) -> bool:
        """ICE restart offer; only the initiator offers, the other side answers it."""
        if self._peer is None or self._restarting or not self._initiator:
            return False
        self._restarting = True
        self._restart_timer = asyncio.get_running_loop().call_later(self._restart_cooldown, self._clear_restarting)

        await self._log("Attempting ICE restart...")
        await self._set_state(NegotiationState.NEGOTIATING)
        try:
            await self._send_offer(ice_restart=True)
        except NegotiationFailure as e:
            logger.warning("rtc restart failed: %s", e)
            return False
        return True

    async def _send_offer(self, ice_restart: bool = False) -> None:
        peer = self._peer
        if peer is None:
            raise NegotiationFailure("no active peer connection")
        try:
            offer = await peer.create_offer(ice_restart=ice_restart)
        except Exception as e:
            raise NegotiationFailure(f"offer creation failed: {e}") from e
        if peer is not self._peer:
            return
        logger.info("rtc offer created ice_restart=%s sdp_len=%s", ice_restart, len(offer["sdp"]))
        await self._relay("offer", self._signaling.send_offer, offer)

    async def _relay(self, kind: str, send: Callable[[Any], Awaitable[None]], payload: Any) -> None:
        try:
            await send(payload)
        except Exception as e:
            raise NegotiationFailure(f"{kind} relay failed: {e}") from e

    async def _apply_candidate(self, peer: WebRTCPeer, candidate: Any) -> None:
        try:
            await peer.add_ice_candidate(candidate)
        except Exception as e:
            logger.warning("rtc candidate apply failed: %s", e)

    async def _flush_pending_candidates(self) -> None:
        peer = self._peer
        if peer is None or not self._pending_candidates:
            return
        pending, self._pending_candidates = self._pending_candidates, []
        logger.debug("rtc flushing candidates count=%s", len(pending))
        for candidate in pending:
            await self._apply_candidate(peer, candidate)

    async def _create_peer(self) -> None:
        await self._close_peer()
        self._generation += 1
        gen = self._generation
        cb = PeerCallbacks(
            on_connection_state=partial(self._on_connection_state, gen),
            on_local_candidate=partial(self._on_local_candidate, gen),
            on_track=partial(self._on_track, gen),
            on_datachannel=partial(self._on_datachannel, gen),
        )
        self._peer = self._peer_factory(cb, self._rtc_config)
        logger.debug("rtc created peer generation=%s", gen)

    async def _close_peer(self) -> None:
        peer, self._peer = self._peer, None
        self._pending_candidates.clear()
        if peer is not None:
            logger.debug("rtc closing peer generation=%s", self._generation)
            await peer.close()

    async def _on_connection_state(self, gen: int, state: str) -> None:
        if gen != self._generation:
            return
        await self._log(f"Peer connection: {state}")
        if state == "connected":
            await self._set_state(NegotiationState.CONNECTED)
        elif state in ("failed", "disconnected"):
            await self._set_state(NegotiationState.FAILED if state == "failed" else NegotiationState.DISCONNECTED)
            if self._initiator:
                await self.restart()
            else:
                await self._log("Waiting for peer to restart the connection...")
        elif state == "closed":
            await self._set_state(NegotiationState.DISCONNECTED)

    async def _on_local_candidate(self, gen: int, candidate: IceCandidateDict) -> None:
        if gen != self._generation:
            return
        logger.debug("rtc local candidate")
        try:
            await self._relay("candidate", self._signaling.send_candidate, candidate)
        except NegotiationFailure as e:
            logger.warning("rtc candidate not sent: %s", e)

    async def _on_track(self, gen: int, track: Any) -> None:
        if gen != self._generation:
            return
        if self._callbacks.on_remote_track:
            await self._callbacks.on_remote_track(track)

    async def _on_datachannel(self, gen: int, channel: Any) -> None:
        if gen != self._generation:
            return
        if channel.label == CONTROL_LABEL and self._callbacks.on_control_channel:
            await self._callbacks.on_control_channel(channel)
        elif channel.label == CHAT_LABEL and self._callbacks.on_chat_channel:
            await self._callbacks.on_chat_channel(channel)
        else:
            logger.debug("rtc datachannel ignored label=%s", channel.label)

    def _clear_restarting(self) -> None:
        self._restarting = False
        self._restart_timer = None

    def _cancel_restart_timer(self) -> None:
        if self._restart_timer is not None:
            self._restart_timer.cancel()
        self._clear_restarting()

    async def _set_state(self, state: NegotiationState) -> None:
        if state is self._state:
            return
        logger.info("rtc negotiation state %s -> %s", self._state.value, state.value)
        self._state = state
        if self._callbacks.on_state:
            await self._callbacks.on_state(state)

    async def _log(self, message: str) -> None:
        if self._callbacks.on_log:
            await self._callbacks.on_log(message)
