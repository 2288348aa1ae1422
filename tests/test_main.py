"""Tests for the client command line."""
from __future__ import annotations

import pytest

from cowatch import main as cli


class StubClient:
    instances: list["StubClient"] = []

    def __init__(self, cfg) -> None:
        self.cfg = cfg
        StubClient.instances.append(self)

    async def run(self) -> None:
        return None


@pytest.fixture
def captured(monkeypatch):
    levels: list = []
    StubClient.instances = []
    monkeypatch.setattr(cli, "setup_logging", levels.append)
    monkeypatch.setattr(cli, "CowatchClient", StubClient)
    return levels


def test_log_level_defaults_to_environment_resolution(captured, monkeypatch):
    monkeypatch.setenv("COWATCH_LOG_LEVEL", "debug")
    assert cli.main([]) == 0
    # setup_logging resolves the env var and the INFO fallback itself.
    assert captured == [None]


def test_flags_override_config(captured):
    assert cli.main(["--log-level", "error", "--room", "abc", "--name", "sam", "--record", "/tmp/call.mkv"]) == 0
    assert captured == ["error"]
    cfg = StubClient.instances[0].cfg
    assert (cfg.client.room, cfg.client.name, cfg.media.record_path) == ("abc", "sam", "/tmp/call.mkv")
