"""In-memory two-party room coordinator.

The coordinator never looks inside negotiation payloads; it only admits
participants, assigns the offerer role and forwards frames to the other
occupant of the sender's room.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from ..net import protocol
from ..net.protocol import JoinResult

logger = logging.getLogger(__name__)

SendCallable = Callable[[dict], Awaitable[None]]


@dataclass(slots=True)
class ParticipantConnection:
    """One transport connection to the coordinator."""

    connection_id: str
    send: SendCallable
    room_id: Optional[str] = None
    initiator: bool = False


class SessionCoordinator:
    """Admit participants into rooms of at most two and relay between them."""

    def __init__(self, max_occupancy: int = protocol.MAX_OCCUPANCY) -> None:
        self._rooms: Dict[str, Dict[str, ParticipantConnection]] = {}
        self._max_occupancy = max_occupancy
        self._lock = asyncio.Lock()

    def occupants(self, room_id: str) -> list[str]:
        return list(self._rooms.get(room_id, {}))

    def room_ids(self) -> list[str]:
        return list(self._rooms)

    async def join(self, connection: ParticipantConnection, room_id: Any) -> JoinResult:
        """Admit `connection` into `room_id` and return the join acknowledgment."""

        if not isinstance(room_id, str) or not room_id:
            return {"ok": False, "error": protocol.ERR_NO_ROOM_ID}

        departed_peers: list[ParticipantConnection] = []
        async with self._lock:
            participants = self._rooms.get(room_id, {})
            if connection.room_id == room_id and connection.connection_id in participants:
                return {"ok": True, "shouldCreateOffer": connection.initiator, "clients": len(participants)}

            if len(participants) >= self._max_occupancy:
                logger.info("coordinator join rejected room=%s id=%s reason=full", room_id, connection.connection_id)
                return {"ok": False, "error": protocol.ERR_ROOM_FULL}

            if connection.room_id is not None:
                departed_peers = self._remove_locked(connection)

            participants = self._rooms.setdefault(room_id, {})
            existing = list(participants.values())
            connection.initiator = len(existing) == 1
            connection.room_id = room_id
            participants[connection.connection_id] = connection
            clients = len(participants)

        logger.info(
            "coordinator join room=%s id=%s clients=%s initiator=%s",
            room_id,
            connection.connection_id,
            clients,
            connection.initiator,
        )
        await self._fan_out(departed_peers, protocol.make_peer_disconnected())
        if clients == self._max_occupancy:
            await self._fan_out(existing, protocol.make_peer_joined())
        return {"ok": True, "shouldCreateOffer": connection.initiator, "clients": clients}

    async def relay(self, connection: ParticipantConnection, mtype: str, payload: Any) -> None:
        """Forward a negotiation payload verbatim to the other occupant."""

        async with self._lock:
            room_id = connection.room_id
            if room_id is None:
                logger.debug("coordinator relay dropped type=%s id=%s reason=no-room", mtype, connection.connection_id)
                return
            targets = [
                participant
                for participant_id, participant in self._rooms.get(room_id, {}).items()
                if participant_id != connection.connection_id
            ]

        logger.debug("coordinator relay type=%s room=%s targets=%s", mtype, room_id, len(targets))
        await self._fan_out(targets, protocol.make_relay(mtype, payload))

    async def disconnect(self, connection: ParticipantConnection) -> None:
        """Drop the connection from its room and tell the remaining occupant."""

        async with self._lock:
            room_id = connection.room_id
            remaining = self._remove_locked(connection)

        if room_id is None:
            return
        logger.info("coordinator disconnect room=%s id=%s remaining=%s", room_id, connection.connection_id, len(remaining))
        await self._fan_out(remaining, protocol.make_peer_disconnected())

    def _remove_locked(self, connection: ParticipantConnection) -> list[ParticipantConnection]:
        room_id = connection.room_id
        connection.room_id = None
        if room_id is None:
            return []
        participants = self._rooms.get(room_id)
        if not participants:
            return []
        participants.pop(connection.connection_id, None)
        if not participants:
            self._rooms.pop(room_id, None)
            logger.debug("coordinator room empty room=%s", room_id)
            return []
        return list(participants.values())

    async def _fan_out(self, targets: Iterable[ParticipantConnection], message: dict) -> None:
        targets = list(targets)
        if not targets:
            return
        results = await asyncio.gather(*(target.send(message) for target in targets), return_exceptions=True)
        for target, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning(
                    "coordinator send failed type=%s id=%s error=%s",
                    message.get("type"),
                    target.connection_id,
                    result,
                )
