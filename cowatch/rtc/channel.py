"""JSON records over an ordered RTCDataChannel."""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from ..errors import ChannelNotReady, MalformedMessage


logger = logging.getLogger(__name__)


MessageHandler = Callable[[Dict[str, Any]], Awaitable[None]]
StateHandler = Callable[[bool], Awaitable[None]]


class ControlSender(Protocol):
    @property
    def is_open(self) -> bool: ...

    def send(self, record: Dict[str, Any]) -> bool: ...

    def require_open(self) -> None: ...


def decode_record(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    try:
        record = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as e:
        raise MalformedMessage("invalid-json") from e
    if not isinstance(record, dict):
        raise MalformedMessage("invalid-message")
    return record


class JsonChannel:
    """Binds to whichever data channel carries `label`.

    The initiator binds a channel it created; the other side binds the one
    announced by the peer connection. Handlers survive rebinding, so engines
    keep working across reconnects.
    """

    def __init__(
        self,
        label: str,
        on_message: Optional[MessageHandler] = None,
        on_state: Optional[StateHandler] = None,
    ):
        self.label = label
        self.on_message = on_message
        self.on_state = on_state
        self._channel: Optional[Any] = None

    @property
    def is_open(self) -> bool:
        return self._channel is not None and self._channel.readyState == "open"

    def bind(self, channel: Any) -> None:
        self._channel = channel
        logger.debug("channel bind label=%s state=%s", self.label, channel.readyState)

        @channel.on("open")
        async def on_open() -> None:
            if channel is not self._channel:
                return
            logger.info("channel open label=%s", self.label)
            if self.on_state:
                await self.on_state(True)

        @channel.on("close")
        async def on_close() -> None:
            if channel is not self._channel:
                return
            logger.info("channel closed label=%s", self.label)
            if self.on_state:
                await self.on_state(False)

        @channel.on("message")
        async def on_message(raw) -> None:
            if channel is not self._channel:
                return
            await self._dispatch(raw)

    def unbind(self) -> None:
        self._channel = None

    def require_open(self) -> None:
        if not self.is_open:
            raise ChannelNotReady(f"{self.label} channel is not open")

    def send(self, record: Dict[str, Any]) -> bool:
        """Send one record; refused (and logged) while the channel is not open."""
        if not self.is_open:
            logger.info("channel send refused label=%s type=%s reason=not-open", self.label, record.get("type"))
            return False
        assert self._channel is not None
        logger.debug("channel send label=%s type=%s", self.label, record.get("type"))
        self._channel.send(json.dumps(record, separators=(",", ":"), ensure_ascii=False))
        return True

    async def _dispatch(self, raw: Any) -> None:
        try:
            record = decode_record(raw)
        except MalformedMessage as e:
            logger.warning("channel dropped frame label=%s error=%s", self.label, e)
            return
        if not self.on_message:
            return
        try:
            await self.on_message(record)
        except Exception:
            logger.exception("channel handler failed label=%s type=%s", self.label, record.get("type"))
