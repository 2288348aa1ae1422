"""WebSocket front end for the session coordinator.

Wire format is documented in `cowatch/net/protocol.py`. Malformed frames are
answered with an `error` event; they never close the connection.
"""
from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Any, Optional
from uuid import uuid4

import websockets
from websockets.exceptions import ConnectionClosed

from ..config import ServerConfig
from ..errors import MalformedMessage
from ..net import protocol
from .coordinator import ParticipantConnection, SessionCoordinator

logger = logging.getLogger(__name__)


async def _send_json(websocket: Any, message: dict) -> None:
    await websocket.send(protocol.encode(message))


class CoordinatorServer:
    def __init__(self, config: Optional[ServerConfig] = None, coordinator: Optional[SessionCoordinator] = None):
        self.config = config or ServerConfig.from_env()
        self.coordinator = coordinator or SessionCoordinator()
        self._server: Optional[Any] = None

    @property
    def port(self) -> Optional[int]:
        """Bound port once started (useful when configured with port 0)."""
        if self._server is None:
            return None
        for sock in self._server.sockets:
            return sock.getsockname()[1]
        return None

    async def start(self) -> None:
        self._server = await websockets.serve(self.handler, self.config.host, self.config.port)
        logger.info("server listening host=%s port=%s", self.config.host, self.port)

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        logger.info("server stopped")

    async def serve_forever(self) -> None:
        await self.start()
        try:
            await asyncio.Future()
        finally:
            await self.stop()

    async def handler(self, websocket: Any) -> None:
        connection = ParticipantConnection(connection_id=uuid4().hex[:8], send=partial(_send_json, websocket))
        logger.info("server connection open id=%s remote=%s", connection.connection_id, websocket.remote_address)
        try:
            async for raw in websocket:
                await self._handle_frame(connection, raw)
        except ConnectionClosed:
            logger.debug("server connection closed id=%s", connection.connection_id)
        except Exception:
            logger.exception("server handler crashed id=%s", connection.connection_id)
        finally:
            await self.coordinator.disconnect(connection)
            logger.info("server connection gone id=%s", connection.connection_id)

    async def _handle_frame(self, connection: ParticipantConnection, raw: Any) -> None:
        try:
            msg = protocol.decode(raw)
        except MalformedMessage as e:
            logger.debug("server bad frame id=%s error=%s", connection.connection_id, e)
            await connection.send(protocol.make_error(str(e)))
            return

        mtype = msg["type"]
        if mtype == protocol.JOIN:
            result = await self.coordinator.join(connection, msg.get("roomId"))
            await connection.send(protocol.make_join_result(result))
            return

        if mtype in protocol.RELAY_TYPES:
            await self.coordinator.relay(connection, mtype, msg.get("payload"))
            return

        await connection.send(protocol.make_error("unknown-type"))
