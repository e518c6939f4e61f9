import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Protocol


class PlayState(str, Enum):
    UNSTARTED = "unstarted"
    PLAYING = "playing"
    PAUSED = "paused"
    BUFFERING = "buffering"
    ENDED = "ended"


class PlayerEventKind(str, Enum):
    READY = "ready"
    STATE_CHANGE = "state_change"
    RATE_CHANGE = "rate_change"


@dataclass(frozen=True)
class PlayerEvent:
    kind: PlayerEventKind
    state: Optional[PlayState] = None
    rate: Optional[float] = None


PlayerListener = Callable[[PlayerEvent], None]


class PlayerSurface(Protocol):
    def load(self, ref: str, start_position: float) -> None: ...
    def play(self) -> None: ...
    def pause(self) -> None: ...
    def seek(self, position: float) -> None: ...
    def set_rate(self, rate: float) -> None: ...
    def get_position(self) -> float: ...
    def get_rate(self) -> float: ...
    def get_play_state(self) -> PlayState: ...
    def get_media(self) -> str: ...
    def subscribe(self, listener: PlayerListener) -> None: ...


class SimulatedPlayer:
    """A player without output: position advances with a monotonic clock.

    Like a real embedded player it notifies listeners for every transition,
    whether the caller is a person or the reconciler.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._listeners: List[PlayerListener] = []
        self._media = ""
        self._state = PlayState.UNSTARTED
        self._rate = 1.0
        self._anchor_position = 0.0
        self._anchor_time = clock()

    def subscribe(self, listener: PlayerListener) -> None:
        self._listeners.append(listener)
        listener(PlayerEvent(PlayerEventKind.READY))

    def _emit(self, event: PlayerEvent) -> None:
        for listener in list(self._listeners):
            listener(event)

    def _rebase(self, position: Optional[float] = None) -> None:
        self._anchor_position = self.get_position() if position is None else max(0.0, position)
        self._anchor_time = self._clock()

    def _transition(self, state: PlayState) -> None:
        if state == self._state:
            return
        self._rebase()
        self._state = state
        self._emit(PlayerEvent(PlayerEventKind.STATE_CHANGE, state=state))

    def load(self, ref: str, start_position: float) -> None:
        self._media = ref
        self._rebase(start_position)
        # Loading starts playback, as embedded players do
        self._state = PlayState.UNSTARTED
        self._transition(PlayState.PLAYING)

    def play(self) -> None:
        if self._media:
            self._transition(PlayState.PLAYING)

    def pause(self) -> None:
        if self._media:
            self._transition(PlayState.PAUSED)

    def seek(self, position: float) -> None:
        self._rebase(position)

    def set_rate(self, rate: float) -> None:
        if rate <= 0 or rate == self._rate:
            return
        self._rebase()
        self._rate = rate
        self._emit(PlayerEvent(PlayerEventKind.RATE_CHANGE, rate=rate))

    def get_position(self) -> float:
        if self._state != PlayState.PLAYING:
            return self._anchor_position
        return self._anchor_position + (self._clock() - self._anchor_time) * self._rate

    def get_rate(self) -> float:
        return self._rate

    def get_play_state(self) -> PlayState:
        return self._state

    def get_media(self) -> str:
        return self._media
