"""One aiortc connection to the single remote participant.

Descriptions and candidates cross this boundary as the JSON dicts relayed by
the coordinator; nothing outside this module touches RTCPeerConnection.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from aiortc import (
    RTCIceCandidate,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.rtcconfiguration import RTCConfiguration, RTCIceServer
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from ..net.protocol import IceCandidateDict, SessionDescriptionDict


logger = logging.getLogger(__name__)


AsyncPeerCallback = Callable[..., Awaitable[None]]


def make_rtc_configuration(stun_url: Optional[str]) -> RTCConfiguration:
    if not stun_url:
        return RTCConfiguration(iceServers=[])
    return RTCConfiguration(iceServers=[RTCIceServer(urls=[stun_url])])


def _candidate_to_json(candidate: RTCIceCandidate) -> IceCandidateDict:
    return {
        "candidate": candidate_to_sdp(candidate),
        "sdpMid": getattr(candidate, "sdpMid", None),
        "sdpMLineIndex": getattr(candidate, "sdpMLineIndex", None),
    }


def _candidate_from_json(obj: Dict[str, Any]) -> RTCIceCandidate:
    cand_sdp = obj.get("candidate")
    if not isinstance(cand_sdp, str) or not cand_sdp:
        raise ValueError("missing candidate")
    # Browsers prefix the attribute name; aiortc's parser does not expect it.
    if cand_sdp.startswith("candidate:"):
        cand_sdp = cand_sdp[len("candidate:"):]
    cand = candidate_from_sdp(cand_sdp)
    cand.sdpMid = obj.get("sdpMid")
    cand.sdpMLineIndex = obj.get("sdpMLineIndex")
    return cand


def _description_from_json(obj: Dict[str, Any], expected_type: str) -> RTCSessionDescription:
    sdp = obj.get("sdp")
    if not isinstance(sdp, str) or not sdp:
        raise ValueError("missing sdp")
    return RTCSessionDescription(sdp=sdp, type=expected_type)


@dataclass
class PeerCallbacks:
    on_connection_state: Optional[AsyncPeerCallback] = None  # (state: str)
    on_local_candidate: Optional[AsyncPeerCallback] = None  # (candidate: dict)
    on_track: Optional[AsyncPeerCallback] = None  # (track: MediaStreamTrack)
    on_datachannel: Optional[AsyncPeerCallback] = None  # (channel: RTCDataChannel)


class WebRTCPeer:
    def __init__(
        self,
        callbacks: Optional[PeerCallbacks] = None,
        rtc_config: Optional[RTCConfiguration] = None,
    ):
        self._callbacks = callbacks or PeerCallbacks()
        self._pc = RTCPeerConnection(configuration=rtc_config)
        self._closed = False

        # aiortc gathers candidates before setLocalDescription returns and
        # embeds them in the SDP, so this only fires for late candidates.
        @self._pc.on("icecandidate")
        async def on_icecandidate(event) -> None:
            candidate = getattr(event, "candidate", event)
            if candidate is None:
                return
            if self._callbacks.on_local_candidate:
                await self._callbacks.on_local_candidate(_candidate_to_json(candidate))

        @self._pc.on("connectionstatechange")
        async def on_connectionstatechange() -> None:
            state = self._pc.connectionState
            logger.info("rtc connectionState=%s", state)
            if self._callbacks.on_connection_state:
                await self._callbacks.on_connection_state(state)

        @self._pc.on("track")
        async def on_track(track) -> None:
            logger.info("rtc remote track kind=%s", track.kind)
            if self._callbacks.on_track:
                await self._callbacks.on_track(track)

        @self._pc.on("datachannel")
        async def on_datachannel(channel) -> None:
            logger.info("rtc datachannel announced label=%s", channel.label)
            if self._callbacks.on_datachannel:
                await self._callbacks.on_datachannel(channel)

    @property
    def signaling_state(self) -> str:
        return self._pc.signalingState

    @property
    def connection_state(self) -> str:
        return self._pc.connectionState

    @property
    def has_remote_description(self) -> bool:
        return self._pc.remoteDescription is not None

    def create_data_channel(self, label: str):
        return self._pc.createDataChannel(label, ordered=True)

    def add_track(self, track) -> None:
        self._pc.addTrack(track)

    def senders(self) -> list:
        return list(self._pc.getSenders())

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._pc.close()

    async def create_offer(self, ice_restart: bool = False) -> SessionDescriptionDict:
        if ice_restart:
            # aiortc has no iceRestart option; a fresh offer re-runs negotiation
            # over the existing transports.
            logger.debug("rtc offer requested with ice_restart")
        offer = await self._pc.createOffer()
        await self._pc.setLocalDescription(offer)
        assert self._pc.localDescription is not None
        return {"type": self._pc.localDescription.type, "sdp": self._pc.localDescription.sdp}

    async def apply_answer(self, description: Dict[str, Any]) -> None:
        await self._pc.setRemoteDescription(_description_from_json(description, "answer"))

    async def apply_offer_and_create_answer(self, description: Dict[str, Any]) -> SessionDescriptionDict:
        await self._pc.setRemoteDescription(_description_from_json(description, "offer"))
        answer = await self._pc.createAnswer()
        await self._pc.setLocalDescription(answer)
        assert self._pc.localDescription is not None
        return {"type": self._pc.localDescription.type, "sdp": self._pc.localDescription.sdp}

    async def add_ice_candidate(self, candidate_obj: Any) -> None:
        if not isinstance(candidate_obj, dict):
            raise ValueError("candidate must be an object")
        await self._pc.addIceCandidate(_candidate_from_json(candidate_obj))
