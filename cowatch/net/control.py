"""Peer-to-peer control messages (sync + call) carried on the `control` channel.

Every message is a JSON object with a `type`. Playback messages carry `t0`,
the sender's wall clock in ms; it is a drift hint only, never used for
ordering. Call messages carry `timestamp` instead.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any, Dict, Optional


LOAD = "load"
PLAY = "play"
PAUSE = "pause"
SEEK = "seek"
RATE = "rate"
REQUEST_SYNC = "request-sync"
SYNC_STATE = "sync-state"

CALL_OFFER = "call-offer"
CALL_ANSWER = "call-answer"
CALL_HANGUP = "call-hangup"

PLAYBACK_TYPES = frozenset({LOAD, PLAY, PAUSE, SEEK, RATE})
SYNC_TYPES = PLAYBACK_TYPES | {REQUEST_SYNC, SYNC_STATE}
CALL_TYPES = frozenset({CALL_OFFER, CALL_ANSWER, CALL_HANGUP})


class PlayerState(IntEnum):
	UNSTARTED = -1
	ENDED = 0
	PLAYING = 1
	PAUSED = 2
	BUFFERING = 3
	CUED = 5


def number_field(msg: Dict[str, Any], key: str) -> Optional[float]:
	"""Return msg[key] when it is a real number; bools and strings don't count."""
	v = msg.get(key)
	if isinstance(v, bool) or not isinstance(v, (int, float)):
		return None
	return float(v)


def make_load(video_id: str, time: float, t0: int) -> Dict[str, Any]:
	return {"type": LOAD, "videoId": video_id, "time": time, "t0": t0}


def make_playback(mtype: str, time: float, t0: int) -> Dict[str, Any]:
	return {"type": mtype, "time": time, "t0": t0}


def make_rate(rate: float, t0: int) -> Dict[str, Any]:
	return {"type": RATE, "rate": rate, "t0": t0}


def make_request_sync(t0: int) -> Dict[str, Any]:
	return {"type": REQUEST_SYNC, "t0": t0}


def make_sync_state(video_id: Optional[str], state: int, time: float, rate: float, t0: int) -> Dict[str, Any]:
	return {"type": SYNC_STATE, "videoId": video_id, "state": int(state), "time": time, "rate": rate, "t0": t0}


def make_call_offer(has_video: bool, timestamp: int) -> Dict[str, Any]:
	return {"type": CALL_OFFER, "hasVideo": bool(has_video), "timestamp": timestamp}


def make_call_answer(accepted: bool, timestamp: int) -> Dict[str, Any]:
	return {"type": CALL_ANSWER, "accepted": bool(accepted), "timestamp": timestamp}


def make_call_hangup(timestamp: int) -> Dict[str, Any]:
	return {"type": CALL_HANGUP, "timestamp": timestamp}
