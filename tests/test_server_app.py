"""Loopback tests: websocket coordinator plus the signaling client."""
from __future__ import annotations

import asyncio
import json

import pytest
import pytest_asyncio
import websockets

from cowatch.config import ServerConfig
from cowatch.errors import RoomFull
from cowatch.net import protocol
from cowatch.net.signaling_client import SignalingCallbacks, SignalingClient
from cowatch.server.app import CoordinatorServer


class Events:
    """Collects signaling callbacks into queues the test can await."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue = asyncio.Queue()

    def callbacks(self) -> SignalingCallbacks:
        async def record(kind, *args):
            await self.queue.put((kind, args))

        return SignalingCallbacks(
            on_peer_joined=lambda: record("peer-joined"),
            on_peer_disconnected=lambda: record("peer-disconnected"),
            on_offer=lambda d: record("offer", d),
            on_answer=lambda d: record("answer", d),
            on_candidate=lambda c: record("candidate", c),
            on_error=lambda e, p: record("error", e),
        )

    async def next(self, timeout: float = 2.0):
        return await asyncio.wait_for(self.queue.get(), timeout=timeout)


@pytest_asyncio.fixture
async def server():
    srv = CoordinatorServer(ServerConfig(host="127.0.0.1", port=0))
    await srv.start()
    try:
        yield srv
    finally:
        await srv.stop()


def _url(srv: CoordinatorServer) -> str:
    return f"ws://127.0.0.1:{srv.port}/ws"


@pytest.mark.asyncio
async def test_join_relay_and_disconnect(server):
    events_a, events_b = Events(), Events()
    a = SignalingClient(_url(server), events_a.callbacks())
    b = SignalingClient(_url(server), events_b.callbacks())
    await a.connect()
    await b.connect()
    try:
        first = await a.join("abc")
        assert first["ok"] is True
        assert first["shouldCreateOffer"] is False
        assert first["clients"] == 1

        second = await b.join("abc")
        assert second["shouldCreateOffer"] is True
        assert second["clients"] == 2
        assert await events_a.next() == ("peer-joined", ())

        offer = {"type": "offer", "sdp": "v=0 test"}
        await b.send_offer(offer)
        assert await events_a.next() == ("offer", (offer,))

        candidate = {"candidate": "candidate:1 1 udp 1 10.0.0.1 5000 typ host", "sdpMid": "0", "sdpMLineIndex": 0}
        await a.send_candidate(candidate)
        assert await events_b.next() == ("candidate", (candidate,))

        await b.disconnect()
        assert await events_a.next() == ("peer-disconnected", ())
        assert len(server.coordinator.occupants("abc")) == 1
    finally:
        await a.disconnect()
        await b.disconnect()


@pytest.mark.asyncio
async def test_third_participant_gets_room_full(server):
    clients = [SignalingClient(_url(server)) for _ in range(3)]
    for client in clients:
        await client.connect()
    try:
        await clients[0].join("abc")
        await clients[1].join("abc")
        with pytest.raises(RoomFull) as info:
            await clients[2].join("abc")
        assert info.value.reason == protocol.ERR_ROOM_FULL
        assert len(server.coordinator.occupants("abc")) == 2
    finally:
        for client in clients:
            await client.disconnect()


@pytest.mark.asyncio
async def test_malformed_frames_get_error_events(server):
    async with websockets.connect(_url(server)) as ws:
        await ws.send("not json")
        reply = json.loads(await asyncio.wait_for(ws.recv(), timeout=2.0))
        assert reply == {"type": protocol.ERROR, "error": "invalid-json"}

        await ws.send(json.dumps({"type": "dance"}))
        reply = json.loads(await asyncio.wait_for(ws.recv(), timeout=2.0))
        assert reply == {"type": protocol.ERROR, "error": "unknown-type"}

        await ws.send(json.dumps({"type": protocol.JOIN}))
        reply = json.loads(await asyncio.wait_for(ws.recv(), timeout=2.0))
        assert reply == {"type": protocol.JOIN_RESULT, "ok": False, "error": protocol.ERR_NO_ROOM_ID}
