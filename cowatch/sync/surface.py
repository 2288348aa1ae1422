"""Video-surface contract and a headless implementation.

A real player widget lives outside this package; anything exposing these
methods and calling the registered listeners can be synchronized. The
headless surface tracks position against a clock and is what the console
client and the tests drive.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional, Protocol

from ..clock import SYSTEM_CLOCK, Clock
from ..net.control import PlayerState


logger = logging.getLogger(__name__)


StateListener = Callable[[PlayerState], None]
RateListener = Callable[[float], None]


class VideoSurface(Protocol):
    @property
    def ready(self) -> bool: ...

    def load_video_by_id(self, video_id: str) -> None: ...

    def play_video(self) -> None: ...

    def pause_video(self) -> None: ...

    def seek_to(self, seconds: float, allow_seek_ahead: bool = True) -> None: ...

    def set_playback_rate(self, rate: float) -> None: ...

    def get_current_time(self) -> float: ...

    def get_playback_rate(self) -> float: ...

    def get_player_state(self) -> PlayerState: ...

    def get_video_data(self) -> Dict[str, Optional[str]]: ...

    def add_state_listener(self, listener: StateListener) -> None: ...

    def add_rate_listener(self, listener: RateListener) -> None: ...


class HeadlessSurface:
    """In-memory player: no decoding, just state, position and rate.

    Loading cues the video (ready, not playing). Seeking reports BUFFERING
    and then the state it was in, the way embedded players do.
    """

    def __init__(self, clock: Clock = SYSTEM_CLOCK, ready: bool = True):
        self._clock = clock
        self._ready = ready
        self._video_id: Optional[str] = None
        self._state = PlayerState.UNSTARTED
        self._position = 0.0
        self._anchor = 0.0
        self._rate = 1.0
        self._state_listeners: list[StateListener] = []
        self._rate_listeners: list[RateListener] = []

    @property
    def ready(self) -> bool:
        return self._ready

    def set_ready(self, ready: bool = True) -> None:
        self._ready = ready

    def add_state_listener(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def add_rate_listener(self, listener: RateListener) -> None:
        self._rate_listeners.append(listener)

    def load_video_by_id(self, video_id: str) -> None:
        self._video_id = video_id
        self._position = 0.0
        self._set_state(PlayerState.CUED)

    def play_video(self) -> None:
        if self._video_id is None:
            return
        self._position = self.get_current_time()
        self._anchor = self._clock.monotonic()
        self._set_state(PlayerState.PLAYING)

    def pause_video(self) -> None:
        if self._video_id is None:
            return
        self._position = self.get_current_time()
        self._set_state(PlayerState.PAUSED)

    def seek_to(self, seconds: float, allow_seek_ahead: bool = True) -> None:
        if self._video_id is None:
            return
        self._position = max(0.0, float(seconds))
        self._anchor = self._clock.monotonic()
        resume = self._state
        self._set_state(PlayerState.BUFFERING)
        self._set_state(resume)

    def set_playback_rate(self, rate: float) -> None:
        rate = float(rate)
        if rate <= 0 or rate == self._rate:
            return
        self._position = self.get_current_time()
        self._anchor = self._clock.monotonic()
        self._rate = rate
        for listener in list(self._rate_listeners):
            listener(rate)

    def get_current_time(self) -> float:
        if self._state is PlayerState.PLAYING:
            return self._position + (self._clock.monotonic() - self._anchor) * self._rate
        return self._position

    def get_playback_rate(self) -> float:
        return self._rate

    def get_player_state(self) -> PlayerState:
        return self._state

    def get_video_data(self) -> Dict[str, Optional[str]]:
        return {"video_id": self._video_id}

    def _set_state(self, state: PlayerState) -> None:
        self._state = state
        for listener in list(self._state_listeners):
            listener(state)
