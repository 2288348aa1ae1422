from __future__ import annotations

import asyncio
import logging
import shlex
import sys
import threading
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, TextIO

from .call.engine import CallState
from .chat import ChatMessage
from .config import ClientConfig, MediaConfig
from .errors import ChannelNotReady, InvalidVideoReference, JoinRejected
from .net.signaling_client import SignalingCallbacks, SignalingClient
from .rtc.media import CaptureProvider, MediaPlayerCapture, RemoteMediaSink
from .rtc.negotiation import NegotiationState
from .rtc.webrtc_peer import make_rtc_configuration
from .session import RoomSession, SessionCallbacks
from .sync.surface import HeadlessSurface, VideoSurface


logger = logging.getLogger(__name__)


HELP_TEXT = """\
Commands:
  join <room>        join a room (leaves the current one)
  leave              leave the room and drop the signaling connection
  reconnect          rebuild the peer connection
  load <url|id>      load a YouTube video for both participants
  play | pause       control local playback (mirrored to the peer)
  seek <seconds>     jump to a position
  rate <factor>      change playback speed
  sync               ask the peer for its playback state
  call | vcall       start an audio / video call
  accept | reject    answer an incoming call
  hangup             end the current call
  mute | camera      toggle microphone / camera
  say <text>         send a chat message (plain text works too)
  status             show room, connection and call state
  quit               exit
"""


class ConsoleReader:
    """Reads stdin lines on a daemon thread and hands them to the event loop."""

    def __init__(self, stream: TextIO = sys.stdin):
        self._stream = stream
        self._queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        loop = asyncio.get_running_loop()

        def _run() -> None:
            while True:
                line = self._stream.readline()
                if not line:
                    loop.call_soon_threadsafe(self._queue.put_nowait, None)
                    return
                loop.call_soon_threadsafe(self._queue.put_nowait, line)

        self._thread = threading.Thread(target=_run, name="console-reader", daemon=True)
        self._thread.start()

    async def readline(self) -> Optional[str]:
        """Next line, or None at end of input."""
        return await self._queue.get()


@dataclass
class AppConfig:
    client: ClientConfig = field(default_factory=ClientConfig.from_env)
    media: MediaConfig = field(default_factory=MediaConfig.from_env)


class CowatchClient:
    def __init__(
        self,
        cfg: AppConfig,
        surface: Optional[VideoSurface] = None,
        capture: Optional[CaptureProvider] = None,
        out: Callable[[str], None] = print,
    ):
        self.cfg = cfg
        self.surface = surface or HeadlessSurface()
        self.capture = capture or MediaPlayerCapture(cfg.media)
        self._out = out

        self.session: Optional[RoomSession] = None
        self._pending_decision: Optional[asyncio.Future[bool]] = None

        self.signaling = SignalingClient(
            url=cfg.client.server_url,
            callbacks=SignalingCallbacks(
                on_log=self._on_async_log,
                on_peer_joined=self._on_peer_joined,
                on_peer_disconnected=self._on_peer_disconnected,
                on_offer=self._on_offer,
                on_answer=self._on_answer,
                on_candidate=self._on_candidate,
                on_closed=self._on_closed,
                on_error=self._on_error,
            ),
            join_timeout=cfg.client.join_timeout_sec,
        )

        self._commands: Dict[str, Callable[[str], Awaitable[None]]] = {
            "join": self._cmd_join,
            "leave": self._cmd_leave,
            "reconnect": self._cmd_reconnect,
            "load": self._cmd_load,
            "play": self._cmd_play,
            "pause": self._cmd_pause,
            "seek": self._cmd_seek,
            "rate": self._cmd_rate,
            "sync": self._cmd_sync,
            "call": self._cmd_call,
            "vcall": self._cmd_vcall,
            "accept": self._cmd_accept,
            "reject": self._cmd_reject,
            "hangup": self._cmd_hangup,
            "mute": self._cmd_mute,
            "camera": self._cmd_camera,
            "say": self._cmd_say,
            "status": self._cmd_status,
            "help": self._cmd_help,
        }

    @property
    def display_name(self) -> str:
        return self.cfg.client.name.strip() or "You"

    async def run(self, reader: Optional[ConsoleReader] = None) -> None:
        reader = reader or ConsoleReader()
        reader.start()
        if self.cfg.client.room:
            await self.join(self.cfg.client.room)
        self._out("Type 'help' for commands.")
        try:
            while True:
                line = await reader.readline()
                if line is None:
                    break
                if not await self.handle_command(line):
                    break
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        logger.info("client shutdown")
        await self._close_session()
        await self.signaling.disconnect()

    async def join(self, room_id: str) -> bool:
        room_id = room_id.strip()
        if not room_id:
            self._status("Please enter a room ID.")
            return False
        if self.session is not None and self.session.room_id == room_id:
            self._status(f'Already in room "{room_id}".')
            return True

        try:
            if not self.signaling.is_connected:
                await self.signaling.connect()
            result = await self.signaling.join(room_id)
        except JoinRejected as e:
            self._status(e.reason)
            return False
        except (OSError, ConnectionError, asyncio.TimeoutError) as e:
            logger.warning("client join failed room=%s error=%s", room_id, e)
            self._status(f"Could not reach the coordinator: {e}")
            return False

        await self._close_session()
        rec = self.cfg.media.record_path
        self.session = RoomSession(
            room_id,
            self.signaling,
            self.surface,
            self.capture,
            self._decide,
            callbacks=SessionCallbacks(
                on_log=self._on_async_log,
                on_chat=self._on_chat,
                on_call_state=self._on_call_state,
                on_call_duration=self._on_call_duration,
                on_negotiation_state=self._on_negotiation_state,
            ),
            rtc_config=make_rtc_configuration(self.cfg.client.stun_url),
            remote_sink=RemoteMediaSink(rec),
        )
        self._status(f'Joined room "{room_id}" ({result.get("clients")}/2).')
        await self.session.open(bool(result.get("shouldCreateOffer")))
        return True

    async def leave(self) -> None:
        await self._close_session()
        await self.signaling.disconnect()
        self._status("Left the room.")

    async def handle_command(self, line: str) -> bool:
        """Run one console line; returns False when the client should exit."""
        line = line.strip()
        if not line:
            return True
        word, _, rest = line.partition(" ")
        word = word.lower()
        if word in ("quit", "exit"):
            return False
        handler = self._commands.get(word)
        if handler is None:
            # Anything that is not a command is chat.
            await self._cmd_say(line)
            return True
        try:
            await handler(rest.strip())
        except ChannelNotReady:
            self._status("Not connected to peer yet.")
        except InvalidVideoReference:
            self._status("Please enter a valid YouTube URL.")
        return True

    # ----------------------
    # Commands
    # ----------------------
    async def _cmd_join(self, arg: str) -> None:
        parts = shlex.split(arg) if arg else []
        await self.join(parts[0] if parts else "")

    async def _cmd_leave(self, _arg: str) -> None:
        await self.leave()

    async def _cmd_reconnect(self, _arg: str) -> None:
        session = self._require_session()
        if session:
            await session.reconnect()

    async def _cmd_load(self, arg: str) -> None:
        session = self._require_session()
        if session and session.sync.load_video(arg):
            self._status(f"Loaded video {session.sync.current_video_id}.")

    async def _cmd_play(self, _arg: str) -> None:
        self.surface.play_video()

    async def _cmd_pause(self, _arg: str) -> None:
        self.surface.pause_video()

    async def _cmd_seek(self, arg: str) -> None:
        seconds = _parse_float(arg)
        if seconds is None or seconds < 0:
            self._status("Usage: seek <seconds>")
            return
        self.surface.seek_to(seconds, True)

    async def _cmd_rate(self, arg: str) -> None:
        rate = _parse_float(arg)
        if rate is None or rate <= 0:
            self._status("Usage: rate <factor>")
            return
        self.surface.set_playback_rate(rate)

    async def _cmd_sync(self, _arg: str) -> None:
        session = self._require_session()
        if session:
            session.sync.request_sync()
            self._status("Requested sync from peer.")

    async def _cmd_call(self, _arg: str) -> None:
        session = self._require_session()
        if session:
            await session.call.start_call(False)

    async def _cmd_vcall(self, _arg: str) -> None:
        session = self._require_session()
        if session:
            await session.call.start_call(True)

    async def _cmd_accept(self, _arg: str) -> None:
        self._resolve_decision(True)

    async def _cmd_reject(self, _arg: str) -> None:
        self._resolve_decision(False)

    async def _cmd_hangup(self, _arg: str) -> None:
        session = self._require_session()
        if session:
            await session.call.end_call()

    async def _cmd_mute(self, _arg: str) -> None:
        session = self._require_session()
        if session and session.call.session is not None:
            muted = session.call.toggle_mute()
            self._status("Microphone muted." if muted else "Microphone unmuted.")

    async def _cmd_camera(self, _arg: str) -> None:
        session = self._require_session()
        if session and session.call.session is not None:
            enabled = session.call.toggle_camera()
            self._status("Camera on." if enabled else "Camera off.")

    async def _cmd_say(self, arg: str) -> None:
        session = self._require_session()
        if not session:
            return
        msg = session.chat.send(self.display_name, arg)
        if msg is not None:
            self._out(f"{msg.user}: {msg.text}")

    async def _cmd_status(self, _arg: str) -> None:
        session = self.session
        if session is None:
            self._status("Not in a room.")
            return
        video = session.sync.current_video_id or "-"
        self._status(
            f"room={session.room_id} peer={session.negotiation.state.value} "
            f"call={session.call.state.value} video={video} "
            f"t={self.surface.get_current_time():.1f}"
        )

    async def _cmd_help(self, _arg: str) -> None:
        self._out(HELP_TEXT)

    # ----------------------
    # Async callbacks
    # ----------------------
    async def _on_async_log(self, message: str) -> None:
        self._status(message)

    async def _on_peer_joined(self) -> None:
        if self.session:
            await self.session.on_peer_joined()

    async def _on_peer_disconnected(self) -> None:
        if self.session:
            await self.session.on_peer_disconnected()

    async def _on_offer(self, description: Dict[str, Any]) -> None:
        if self.session:
            await self.session.on_offer(description)
        else:
            logger.debug("client offer dropped reason=no-session")

    async def _on_answer(self, description: Dict[str, Any]) -> None:
        if self.session:
            await self.session.on_answer(description)

    async def _on_candidate(self, candidate: Any) -> None:
        if self.session:
            await self.session.on_candidate(candidate)

    async def _on_closed(self) -> None:
        self._status("Signaling disconnected.")

    async def _on_error(self, error: str, payload: dict) -> None:
        logger.warning("client signaling error=%s payload=%s", error, payload)
        self._status(f"Error: {error}")

    async def _on_chat(self, msg: ChatMessage) -> None:
        self._out(f"{msg.user}: {msg.text}")

    async def _on_call_state(self, state: CallState) -> None:
        if state is CallState.IDLE:
            # The caller hung up while we were still deciding.
            self._resolve_decision(False)

    async def _on_call_duration(self, seconds: int) -> None:
        logger.debug("call duration=%02d:%02d", seconds // 60, seconds % 60)

    async def _on_negotiation_state(self, state: NegotiationState) -> None:
        logger.info("client peer state=%s", state.value)

    async def _decide(self, has_video: bool) -> bool:
        fut: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self._pending_decision = fut
        self._status(f"Incoming {'video' if has_video else 'audio'} call. Type 'accept' or 'reject'.")
        try:
            return await fut
        finally:
            if self._pending_decision is fut:
                self._pending_decision = None

    def _resolve_decision(self, accept: bool) -> None:
        fut = self._pending_decision
        if fut is not None and not fut.done():
            fut.set_result(accept)

    async def _close_session(self) -> None:
        session, self.session = self.session, None
        if session is not None:
            self._resolve_decision(False)
            await session.close()

    def _require_session(self) -> Optional[RoomSession]:
        if self.session is None:
            self._status("Join a room first.")
        return self.session

    def _status(self, message: str) -> None:
        self._out(f"[status] {message}")


def _parse_float(value: str) -> Optional[float]:
    try:
        return float(value)
    except ValueError:
        return None
