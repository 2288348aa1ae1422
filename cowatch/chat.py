"""Text chat on the `chat` data channel. Nothing is persisted."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from .clock import SYSTEM_CLOCK, Clock
from .net.control import number_field
from .rtc.channel import JsonChannel, StateHandler
from .rtc.negotiation import CHAT_LABEL


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChatMessage:
    user: str
    text: str
    ts: int


class ChatChannel:
    def __init__(
        self,
        clock: Clock = SYSTEM_CLOCK,
        on_message: Optional[Callable[[ChatMessage], Awaitable[None]]] = None,
        on_state: Optional[StateHandler] = None,
    ):
        self._clock = clock
        self.on_message = on_message
        self.channel = JsonChannel(CHAT_LABEL, on_message=self._on_record, on_state=on_state)

    @property
    def is_open(self) -> bool:
        return self.channel.is_open

    def bind(self, raw_channel: Any) -> None:
        self.channel.bind(raw_channel)

    def unbind(self) -> None:
        self.channel.unbind()

    def send(self, user: str, text: str) -> Optional[ChatMessage]:
        """Send a line of chat; returns the record so the caller can echo it."""
        text = text.strip()
        if not text:
            return None
        msg = ChatMessage(user=user.strip() or "You", text=text, ts=self._clock.now_ms())
        self.channel.send(asdict(msg))
        return msg

    async def _on_record(self, record: Dict[str, Any]) -> None:
        text = record.get("text")
        if not isinstance(text, str):
            logger.warning("chat record dropped reason=missing-text")
            return
        ts = number_field(record, "ts")
        msg = ChatMessage(
            user=str(record.get("user") or "Peer"),
            text=text,
            ts=int(ts) if ts is not None else self._clock.now_ms(),
        )
        if self.on_message:
            await self.on_message(msg)
