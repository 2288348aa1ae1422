"""In-memory stand-ins for clocks, channels, peers and capture devices."""
from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

from cowatch.errors import CaptureDeviceFailure, ChannelNotReady
from cowatch.rtc.media import LocalMedia


class FakeClock:
    def __init__(self, start: float = 100.0) -> None:
        self.t = start

    def monotonic(self) -> float:
        return self.t

    def now_ms(self) -> int:
        return int(self.t * 1000)

    def advance(self, seconds: float) -> None:
        self.t += seconds


class FakeControl:
    """ControlSender that records what would go over the wire."""

    def __init__(self, is_open: bool = True) -> None:
        self.open = is_open
        self.sent: list[dict] = []

    @property
    def is_open(self) -> bool:
        return self.open

    def send(self, record: dict) -> bool:
        if not self.open:
            return False
        self.sent.append(record)
        return True

    def require_open(self) -> None:
        if not self.open:
            raise ChannelNotReady("control channel is not open")

    def types(self) -> list[str]:
        return [m["type"] for m in self.sent]


class FakeDataChannel:
    """Mimics the parts of RTCDataChannel that JsonChannel touches."""

    def __init__(self, label: str, ready_state: str = "open") -> None:
        self.label = label
        self.readyState = ready_state
        self.sent: list[dict] = []
        self.handlers: dict[str, Any] = {}

    def on(self, event: str):
        def decorator(fn):
            self.handlers[event] = fn
            return fn

        return decorator

    def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def deliver(self, record: Any) -> None:
        raw = record if isinstance(record, (str, bytes)) else json.dumps(record)
        await self.handlers["message"](raw)


class FakePeer:
    """WebRTCPeer double: tracks signaling state without any ICE/DTLS.

    With `auto_connect` the peer reports "connected" once an offer/answer
    round completes on its side, the way a real transport would shortly after.
    """

    def __init__(self, callbacks: Any, rtc_config: Any = None, auto_connect: bool = False) -> None:
        self.callbacks = callbacks
        self.rtc_config = rtc_config
        self.auto_connect = auto_connect
        self.signaling_state = "stable"
        self.has_remote_description = False
        self.channels: list[FakeDataChannel] = []
        self.tracks: list[Any] = []
        self.candidates: list[Any] = []
        self.offers: list[bool] = []
        self.closed = False

    @property
    def connection_state(self) -> str:
        return "closed" if self.closed else "new"

    def create_data_channel(self, label: str) -> FakeDataChannel:
        channel = FakeDataChannel(label, ready_state="connecting")
        self.channels.append(channel)
        return channel

    def add_track(self, track: Any) -> None:
        self.tracks.append(track)

    def senders(self) -> list:
        return list(self.tracks)

    async def close(self) -> None:
        self.closed = True

    async def create_offer(self, ice_restart: bool = False) -> dict:
        self.offers.append(ice_restart)
        self.signaling_state = "have-local-offer"
        return {"type": "offer", "sdp": "v=0 offer"}

    async def apply_answer(self, description: dict) -> None:
        self.signaling_state = "stable"
        self.has_remote_description = True
        self._report_connected()

    async def apply_offer_and_create_answer(self, description: dict) -> dict:
        self.has_remote_description = True
        self._report_connected()
        return {"type": "answer", "sdp": "v=0 answer"}

    def _report_connected(self) -> None:
        if self.auto_connect and not self.closed:
            asyncio.create_task(self.callbacks.on_connection_state("connected"))

    async def add_ice_candidate(self, candidate: Any) -> None:
        self.candidates.append(candidate)


class PeerFactory:
    def __init__(self, auto_connect: bool = False) -> None:
        self.auto_connect = auto_connect
        self.peers: list[FakePeer] = []

    def __call__(self, callbacks: Any, rtc_config: Any = None) -> FakePeer:
        peer = FakePeer(callbacks, rtc_config, auto_connect=self.auto_connect)
        self.peers.append(peer)
        return peer


class RecordingSignaling:
    def __init__(self) -> None:
        self.offers: list[dict] = []
        self.answers: list[dict] = []
        self.candidates: list[dict] = []

    async def send_offer(self, description: dict) -> None:
        self.offers.append(description)

    async def send_answer(self, description: dict) -> None:
        self.answers.append(description)

    async def send_candidate(self, candidate: dict) -> None:
        self.candidates.append(candidate)



class OfflineSignaling:
    """Relay whose coordinator socket is gone."""

    def __init__(self) -> None:
        self.attempts = 0

    async def _fail(self, _payload: dict) -> None:
        self.attempts += 1
        raise RuntimeError("Signaling not connected")

    send_offer = _fail
    send_answer = _fail
    send_candidate = _fail


class FakeTrack:
    def __init__(self, kind: str) -> None:
        self.kind = kind
        self.enabled = True
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class FakeCapture:
    """CaptureProvider; `gate` holds acquisition open until the test releases it."""

    def __init__(self, fail: bool = False, gate: Optional[asyncio.Event] = None) -> None:
        self.fail = fail
        self.gate = gate
        self.calls = 0
        self.tracks: list[FakeTrack] = []

    async def acquire(self, has_video: bool) -> LocalMedia:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise CaptureDeviceFailure("microphone unavailable")
        audio = FakeTrack("audio")
        video = FakeTrack("video") if has_video else None
        self.tracks.extend(t for t in (audio, video) if t is not None)
        return LocalMedia(audio=audio, video=video)  # type: ignore[arg-type]


class FakeSink:
    def __init__(self) -> None:
        self.tracks: list[Any] = []
        self.stops = 0

    async def add_track(self, track: Any) -> None:
        self.tracks.append(track)

    async def stop(self) -> None:
        self.stops += 1


async def settle(rounds: int = 5) -> None:
    """Let scheduled tasks run up to their next real suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)
