"""Tests for how remote call media is consumed."""
from __future__ import annotations

import pytest

from cowatch.rtc import media
from cowatch.rtc.media import RemoteMediaSink

from fakes import FakeClock, FakeTrack


class StubRecorder:
    def __init__(self, target: str) -> None:
        self.target = target
        self.tracks: list = []
        self.started = False
        self.stopped = False

    def addTrack(self, track) -> None:
        self.tracks.append(track)

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True


@pytest.fixture
def recorders(monkeypatch):
    created: list[StubRecorder] = []

    def factory(target: str) -> StubRecorder:
        recorder = StubRecorder(target)
        created.append(recorder)
        return recorder

    monkeypatch.setattr(media, "MediaRecorder", factory)
    return created


@pytest.mark.asyncio
async def test_each_call_records_to_its_own_files(recorders):
    clock = FakeClock(start=10.0)
    sink = RemoteMediaSink("/tmp/peer.mkv", clock=clock)

    await sink.add_track(FakeTrack("audio"))
    clock.advance(0.5)
    await sink.add_track(FakeTrack("video"))
    await sink.stop()

    clock.advance(60)
    await sink.add_track(FakeTrack("audio"))
    await sink.stop()

    assert [r.target for r in recorders] == [
        "/tmp/peer-10000-audio.mkv",
        "/tmp/peer-10000-video.mkv",
        "/tmp/peer-70500-audio.mkv",
    ]
    assert all(r.started and r.stopped for r in recorders)


def test_record_path_without_extension_defaults_to_mp4():
    sink = RemoteMediaSink("/tmp/peer", clock=FakeClock(start=1.0))
    assert sink.target_for("audio") == "/tmp/peer-1000-audio.mp4"
    assert RemoteMediaSink().target_for("audio") is None
