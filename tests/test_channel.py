"""Tests for JSON data channels and the chat channel."""
from __future__ import annotations

import pytest

from cowatch.chat import ChatChannel, ChatMessage
from cowatch.errors import ChannelNotReady
from cowatch.rtc.channel import JsonChannel

from fakes import FakeClock, FakeDataChannel


@pytest.mark.asyncio
async def test_records_reach_handler_and_garbage_is_dropped():
    received = []

    async def on_message(record):
        received.append(record)

    channel = JsonChannel("control", on_message=on_message)
    raw = FakeDataChannel("control")
    channel.bind(raw)

    await raw.deliver("{not json")
    await raw.deliver("[1, 2]")
    await raw.deliver({"type": "play", "time": 1})
    await raw.deliver(b'{"type": "pause"}')

    assert received == [{"type": "play", "time": 1}, {"type": "pause"}]


@pytest.mark.asyncio
async def test_handler_errors_do_not_escape():
    async def on_message(record):
        raise RuntimeError("boom")

    channel = JsonChannel("control", on_message=on_message)
    raw = FakeDataChannel("control")
    channel.bind(raw)

    await raw.deliver({"type": "play"})


@pytest.mark.asyncio
async def test_events_from_replaced_channel_are_ignored():
    received = []
    states = []

    async def on_message(record):
        received.append(record)

    async def on_state(is_open):
        states.append(is_open)

    channel = JsonChannel("control", on_message=on_message, on_state=on_state)
    old, new = FakeDataChannel("control"), FakeDataChannel("control")
    channel.bind(old)
    channel.bind(new)

    await old.deliver({"type": "play"})
    await old.handlers["close"]()
    assert received == []
    assert states == []

    await new.handlers["open"]()
    assert states == [True]


def test_send_requires_open_channel():
    channel = JsonChannel("control")
    assert channel.send({"type": "play"}) is False
    with pytest.raises(ChannelNotReady):
        channel.require_open()

    raw = FakeDataChannel("control", ready_state="connecting")
    channel.bind(raw)
    assert channel.send({"type": "play"}) is False

    raw.readyState = "open"
    assert channel.send({"type": "play"}) is True
    assert raw.sent == [{"type": "play"}]

    channel.unbind()
    assert not channel.is_open


@pytest.mark.asyncio
async def test_chat_send_and_receive():
    received = []

    async def on_message(msg):
        received.append(msg)

    clock = FakeClock()
    chat = ChatChannel(clock, on_message=on_message)
    raw = FakeDataChannel("chat")
    chat.bind(raw)

    assert chat.send("alex", "   ") is None
    sent = chat.send(" alex ", " hello ")
    assert sent == ChatMessage(user="alex", text="hello", ts=clock.now_ms())
    assert raw.sent == [{"user": "alex", "text": "hello", "ts": clock.now_ms()}]

    await raw.deliver({"user": "sam", "text": "hi", "ts": 5})
    await raw.deliver({"user": "sam"})
    await raw.deliver({"text": "anon"})
    assert received == [
        ChatMessage(user="sam", text="hi", ts=5),
        ChatMessage(user="Peer", text="anon", ts=clock.now_ms()),
    ]


def test_chat_send_while_closed_still_returns_record():
    chat = ChatChannel(FakeClock())
    msg = chat.send("", "offline")
    assert msg is not None
    assert msg.user == "You"
    assert not chat.is_open
