"""Tests for the per-room session wiring."""
from __future__ import annotations

import asyncio

import pytest

from cowatch.call.engine import CallState
from cowatch.chat import ChatMessage
from cowatch.net import control
from cowatch.net.control import PlayerState
from cowatch.session import RoomSession, SessionCallbacks
from cowatch.sync.surface import HeadlessSurface

from fakes import FakeCapture, FakeClock, FakeDataChannel, FakeSink, PeerFactory, RecordingSignaling, settle


VIDEO = "dQw4w9WgXcQ"


def make_session(ready: bool = False, decide=None):
    clock = FakeClock()
    surface = HeadlessSurface(clock, ready=ready)
    factory = PeerFactory()
    signaling = RecordingSignaling()
    capture = FakeCapture()
    logs: list[str] = []
    chats: list[ChatMessage] = []

    async def on_log(message):
        logs.append(message)

    async def on_chat(msg):
        chats.append(msg)

    async def decline(_has_video):
        return False

    session = RoomSession(
        "abc",
        signaling,
        surface,
        capture,
        decide or decline,
        clock=clock,
        callbacks=SessionCallbacks(on_log=on_log, on_chat=on_chat),
        peer_factory=factory,
        remote_sink=FakeSink(),
    )
    return session, surface, factory, signaling, capture, logs, chats


@pytest.mark.asyncio
async def test_call_messages_bypass_readiness_gate():
    gate: asyncio.Future = asyncio.get_running_loop().create_future()

    async def decide(_has_video):
        return await gate

    session, surface, factory, signaling, capture, logs, chats = make_session(ready=False, decide=decide)
    await session.open(False)
    raw = FakeDataChannel("control")
    await factory.peers[0].callbacks.on_datachannel(raw)

    pending = asyncio.create_task(session.dispatch_control(control.make_call_offer(True, 1)))
    await settle()
    assert session.call.state is CallState.RECEIVING

    await session.dispatch_control(control.make_call_hangup(2))
    assert session.call.state is CallState.IDLE
    gate.set_result(True)
    await pending
    assert capture.calls == 0

    await session.close()


@pytest.mark.asyncio
async def test_sync_messages_wait_for_surface():
    session, surface, factory, signaling, capture, logs, chats = make_session(ready=False)
    await session.open(False)

    await session.dispatch_control(control.make_load(VIDEO, 0, 1))
    assert surface.get_video_data() == {"video_id": None}

    surface.set_ready()
    await session.dispatch_control(control.make_load(VIDEO, 0, 1))
    assert surface.get_video_data() == {"video_id": VIDEO}
    assert surface.get_player_state() == PlayerState.CUED

    await session.dispatch_control({"type": "mystery"})
    await session.close()


@pytest.mark.asyncio
async def test_initiator_binds_its_own_channels():
    session, surface, factory, signaling, capture, logs, chats = make_session(ready=True)
    await session.open(True)

    peer = factory.peers[0]
    assert [c.label for c in peer.channels] == ["control", "chat"]
    assert signaling.offers

    control_channel, chat_channel = peer.channels
    control_channel.readyState = "open"
    await control_channel.handlers["open"]()
    assert session.control.is_open
    assert "Control channel open. Video sync ready!" in logs

    chat_channel.readyState = "open"
    await chat_channel.deliver({"user": "sam", "text": "hi", "ts": 3})
    assert chats == [ChatMessage(user="sam", text="hi", ts=3)]

    await session.close()


@pytest.mark.asyncio
async def test_negotiation_messages_reach_controller():
    session, surface, factory, signaling, capture, logs, chats = make_session()
    await session.open(False)

    await session.on_candidate({"candidate": "candidate:1 1 udp 1 10.0.0.1 5000 typ host", "sdpMid": "0"})
    await session.on_offer({"type": "offer", "sdp": "v=0"})
    assert signaling.answers == [{"type": "answer", "sdp": "v=0 answer"}]
    assert len(factory.peers[0].candidates) == 1

    await session.close()


@pytest.mark.asyncio
async def test_peer_disconnect_ends_call_and_resets_negotiation():
    async def accept(_has_video):
        return True

    session, surface, factory, signaling, capture, logs, chats = make_session(ready=True, decide=accept)
    await session.open(True)
    control_channel = factory.peers[0].channels[0]
    control_channel.readyState = "open"

    await session.dispatch_control(control.make_call_offer(False, 1))
    assert session.call.state is CallState.CONNECTED

    await session.on_peer_disconnected()
    assert session.call.state is CallState.IDLE
    assert all(t.stopped for t in capture.tracks)
    assert not session.control.is_open
    assert len(factory.peers) == 2
    assert factory.peers[0].closed
    assert session.negotiation.initiator is False

    await session.close()


@pytest.mark.asyncio
async def test_peer_joined_schedules_announcement():
    session, surface, factory, signaling, capture, logs, chats = make_session(ready=True)
    session.sync._settle_delay = 0
    await session.open(True)

    await session.on_peer_joined()
    await settle()
    assert logs[-1] == "Peer joined. Load a video to start syncing."

    await session.close()
