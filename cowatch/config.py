"""Environment-driven configuration for the server and the client."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


DEFAULT_STUN_URL = "stun:stun.l.google.com:19302"


def _env_str(name: str, default: str) -> str:
	v = os.environ.get(name)
	if v is None or not v.strip():
		return default
	return v.strip()


def _env_optional(name: str) -> Optional[str]:
	v = os.environ.get(name, "").strip()
	return v or None


def _env_int(name: str, default: int) -> int:
	v = os.environ.get(name)
	if v is None:
		return default
	try:
		return int(v)
	except Exception:
		return default


def _env_float(name: str, default: float) -> float:
	v = os.environ.get(name)
	if v is None:
		return default
	try:
		return float(v)
	except Exception:
		return default


@dataclass
class ServerConfig:
	host: str = "0.0.0.0"
	port: int = 8765

	@classmethod
	def from_env(cls) -> "ServerConfig":
		return cls(
			host=_env_str("COWATCH_HOST", cls.host),
			port=_env_int("COWATCH_PORT", cls.port),
		)


@dataclass(frozen=True)
class CaptureDevice:
	"""An ffmpeg input passed to aiortc's MediaPlayer.

	`backend` is the ffmpeg format string (e.g. "pulse", "v4l2", "avfoundation").
	"""

	device: str
	backend: Optional[str] = None


@dataclass
class MediaConfig:
	audio: Optional[CaptureDevice] = None
	video: Optional[CaptureDevice] = None
	record_path: Optional[str] = None

	@classmethod
	def from_env(cls) -> "MediaConfig":
		audio_dev = _env_optional("COWATCH_AUDIO_DEVICE")
		video_dev = _env_optional("COWATCH_VIDEO_DEVICE")
		return cls(
			audio=CaptureDevice(audio_dev, _env_optional("COWATCH_AUDIO_FORMAT")) if audio_dev else None,
			video=CaptureDevice(video_dev, _env_optional("COWATCH_VIDEO_FORMAT")) if video_dev else None,
			record_path=_env_optional("COWATCH_RECORD_PATH"),
		)


@dataclass
class ClientConfig:
	server_url: str = "ws://127.0.0.1:8765/ws"
	room: str = ""
	name: str = ""
	stun_url: str = DEFAULT_STUN_URL
	join_timeout_sec: float = 10.0

	@classmethod
	def from_env(cls) -> "ClientConfig":
		return cls(
			server_url=_env_str("COWATCH_SERVER_URL", cls.server_url),
			room=_env_str("COWATCH_ROOM", cls.room),
			name=_env_str("COWATCH_NAME", os.environ.get("USER", "")),
			stun_url=_env_str("COWATCH_STUN_URL", cls.stun_url),
			join_timeout_sec=_env_float("COWATCH_JOIN_TIMEOUT_SEC", cls.join_timeout_sec),
		)
