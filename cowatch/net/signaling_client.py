"""WebSocket signaling client.

This is intentionally unaware of aiortc. It only speaks the JSON protocol
implemented by `cowatch/server/app.py`; negotiation payloads are opaque dicts.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from ..errors import JoinRejected, MalformedMessage, RoomFull
from . import protocol


logger = logging.getLogger(__name__)


AsyncCallback = Callable[..., Awaitable[None]]


@dataclass
class SignalingCallbacks:
	on_log: Optional[AsyncCallback] = None
	on_peer_joined: Optional[AsyncCallback] = None  # ()
	on_peer_disconnected: Optional[AsyncCallback] = None  # ()
	on_offer: Optional[AsyncCallback] = None  # (description: dict)
	on_answer: Optional[AsyncCallback] = None  # (description: dict)
	on_candidate: Optional[AsyncCallback] = None  # (candidate: dict)
	on_closed: Optional[AsyncCallback] = None  # ()
	on_error: Optional[AsyncCallback] = None  # (error: str, payload: dict)


class SignalingClient:
	def __init__(self, url: str, callbacks: Optional[SignalingCallbacks] = None, join_timeout: float = 10.0):
		self.url = url
		self.callbacks = callbacks or SignalingCallbacks()
		self.join_timeout = join_timeout

		self._ws: Optional[Any] = None
		self._recv_task: Optional[asyncio.Task[None]] = None
		self._send_lock = asyncio.Lock()
		self._pending_join: Optional[asyncio.Future[protocol.JoinResult]] = None

	@property
	def is_connected(self) -> bool:
		return self._ws is not None and self._ws.state is State.OPEN

	async def connect(self) -> None:
		if self._recv_task and not self._recv_task.done():
			return

		await self._log(f"Connecting to {self.url}")
		logger.info("signaling connect url=%s", self.url)
		self._ws = await websockets.connect(self.url)
		self._recv_task = asyncio.create_task(self._recv_loop(), name="signaling-recv")
		await self._log("Signaling connected.")

	async def disconnect(self) -> None:
		logger.info("signaling disconnect")
		if self._recv_task:
			self._recv_task.cancel()
			try:
				await self._recv_task
			except asyncio.CancelledError:
				pass
			self._recv_task = None

		if self._ws:
			await self._ws.close()
		self._ws = None

	async def join(self, room_id: str) -> protocol.JoinResult:
		"""Ask the coordinator for a slot; raises JoinRejected/RoomFull on refusal."""
		if self._pending_join and not self._pending_join.done():
			raise RuntimeError("join already in flight")

		fut: asyncio.Future[protocol.JoinResult] = asyncio.get_running_loop().create_future()
		self._pending_join = fut
		try:
			await self._send(protocol.make_join(room_id))
			result = await asyncio.wait_for(fut, timeout=self.join_timeout)
		finally:
			self._pending_join = None

		if not result.get("ok"):
			reason = str(result.get("error") or "Failed to join room.")
			logger.info("signaling join rejected room=%s reason=%s", room_id, reason)
			if reason == protocol.ERR_ROOM_FULL:
				raise RoomFull(reason)
			raise JoinRejected(reason)
		logger.info(
			"signaling joined room=%s clients=%s offerer=%s",
			room_id,
			result.get("clients"),
			result.get("shouldCreateOffer"),
		)
		return result

	async def send_offer(self, description: protocol.SessionDescriptionDict) -> None:
		await self._send(protocol.make_relay(protocol.OFFER, description))

	async def send_answer(self, description: protocol.SessionDescriptionDict) -> None:
		await self._send(protocol.make_relay(protocol.ANSWER, description))

	async def send_candidate(self, candidate: protocol.IceCandidateDict) -> None:
		await self._send(protocol.make_relay(protocol.CANDIDATE, candidate))

	async def _send(self, payload: Dict[str, Any]) -> None:
		if not self._ws:
			raise RuntimeError("Signaling not connected")
		mtype = payload.get("type")
		if mtype in (protocol.OFFER, protocol.ANSWER):
			sdp = (payload.get("payload") or {}).get("sdp", "")
			logger.info("signaling send type=%s sdp_len=%s", mtype, len(str(sdp)))
		else:
			logger.debug("signaling send type=%s", mtype)
		async with self._send_lock:
			await self._ws.send(protocol.encode(payload))

	async def _recv_loop(self) -> None:
		assert self._ws is not None
		ws = self._ws
		logger.debug("signaling recv loop started")

		try:
			async for raw in ws:
				try:
					msg = protocol.decode(raw)
				except MalformedMessage as e:
					await self._emit_error(str(e), {"raw": raw})
					continue

				mtype = msg["type"]

				if mtype == protocol.JOIN_RESULT:
					fut = self._pending_join
					if fut is not None and not fut.done():
						fut.set_result(msg)  # type: ignore[arg-type]
					else:
						logger.debug("signaling unexpected join-result")
					continue

				if mtype == protocol.PEER_JOINED:
					logger.info("signaling peer-joined")
					if self.callbacks.on_peer_joined:
						await self.callbacks.on_peer_joined()
					continue

				if mtype == protocol.PEER_DISCONNECTED:
					logger.info("signaling peer-disconnected")
					if self.callbacks.on_peer_disconnected:
						await self.callbacks.on_peer_disconnected()
					continue

				if mtype in (protocol.OFFER, protocol.ANSWER):
					description = msg.get("payload")
					if not isinstance(description, dict):
						await self._emit_error("missing-payload", msg)
						continue
					logger.info("signaling %s received sdp_len=%s", mtype, len(str(description.get("sdp", ""))))
					cb = self.callbacks.on_offer if mtype == protocol.OFFER else self.callbacks.on_answer
					if cb:
						await cb(description)
					continue

				if mtype == protocol.CANDIDATE:
					candidate = msg.get("payload")
					logger.debug("signaling candidate received has_candidate=%s", bool(candidate))
					if self.callbacks.on_candidate:
						await self.callbacks.on_candidate(candidate)
					continue

				if mtype == protocol.ERROR:
					await self._emit_error(str(msg.get("error", "error")), msg)
					continue

				await self._emit_error("unknown-type", msg)

		except asyncio.CancelledError:
			raise
		except ConnectionClosed:
			logger.info("signaling connection closed by server")
		except Exception as e:
			logger.exception("signaling recv loop crashed")
			await self._emit_error(f"recv-loop-exception: {e}", {})
		finally:
			logger.debug("signaling recv loop stopped")
			fut = self._pending_join
			if fut is not None and not fut.done():
				fut.set_exception(ConnectionError("signaling connection lost"))
			if self._ws is ws:
				self._ws = None

		await self._log("Signaling disconnected.")
		if self.callbacks.on_closed:
			await self.callbacks.on_closed()

	async def _emit_error(self, error: str, payload: Dict[str, Any]) -> None:
		await self._log(f"Signaling error: {error}")
		if self.callbacks.on_error:
			await self.callbacks.on_error(error, payload)

	async def _log(self, message: str) -> None:
		if self.callbacks.on_log:
			await self.callbacks.on_log(message)
