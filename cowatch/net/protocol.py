"""Signaling protocol helpers.

Coordinator and clients exchange JSON objects on a single WebSocket.
See `cowatch/server/app.py` for authoritative behavior.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional, TypedDict

from ..errors import MalformedMessage


# Message type constants
JOIN = "join"
JOIN_RESULT = "join-result"
PEER_JOINED = "peer-joined"
PEER_DISCONNECTED = "peer-disconnected"

OFFER = "offer"
ANSWER = "answer"
CANDIDATE = "candidate"

ERROR = "error"

RELAY_TYPES = frozenset({OFFER, ANSWER, CANDIDATE})

# Join rejection reasons (shown to users verbatim)
ERR_NO_ROOM_ID = "No roomId provided."
ERR_ROOM_FULL = "Room full (2 users max)."

MAX_OCCUPANCY = 2


class JoinResult(TypedDict, total=False):
	ok: bool
	error: str
	shouldCreateOffer: bool
	clients: int


class SessionDescriptionDict(TypedDict):
	type: str
	sdp: str


class IceCandidateDict(TypedDict, total=False):
	candidate: str
	sdpMid: Optional[str]
	sdpMLineIndex: Optional[int]


def make_join(room_id: str) -> Dict[str, Any]:
	return {"type": JOIN, "roomId": room_id}


def make_join_result(result: JoinResult) -> Dict[str, Any]:
	msg: Dict[str, Any] = {"type": JOIN_RESULT}
	msg.update(result)
	return msg


def make_relay(mtype: str, payload: Any) -> Dict[str, Any]:
	if mtype not in RELAY_TYPES:
		raise ValueError(f"not a relay type: {mtype}")
	return {"type": mtype, "payload": payload}


def make_peer_joined() -> Dict[str, Any]:
	return {"type": PEER_JOINED}


def make_peer_disconnected() -> Dict[str, Any]:
	return {"type": PEER_DISCONNECTED}


def make_error(error: str) -> Dict[str, Any]:
	return {"type": ERROR, "error": error}


def encode(msg: Dict[str, Any]) -> str:
	return json.dumps(msg, separators=(",", ":"), ensure_ascii=False)


def decode(raw: Any) -> Dict[str, Any]:
	"""Parse one frame into a message dict that carries a string `type`."""
	if isinstance(raw, (bytes, bytearray)):
		try:
			raw = raw.decode("utf-8")
		except UnicodeDecodeError as e:
			raise MalformedMessage("invalid-utf8") from e
	try:
		msg = json.loads(raw)
	except (TypeError, json.JSONDecodeError) as e:
		raise MalformedMessage("invalid-json") from e
	if not isinstance(msg, dict):
		raise MalformedMessage("invalid-message")
	if not isinstance(msg.get("type"), str):
		raise MalformedMessage("missing-type")
	return msg
