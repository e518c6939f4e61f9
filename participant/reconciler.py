from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Union

from clock import clamp_position, now_ms, project_position
from constants import DRIFT_THRESHOLD, RATE_EPSILON
from logging_config import get_logger
from participant.player import PlayerEvent, PlayerEventKind, PlayerSurface, PlayState
from schemas.messages import WireState

logger = get_logger(__name__)

PatchSink = Callable[[Dict[str, Any]], None]


class CorrectionScope:
    """Marker that is active while the reconciler is driving the player."""

    def __init__(self):
        self._depth = 0

    @property
    def active(self) -> bool:
        return self._depth > 0

    @contextmanager
    def applying(self) -> Iterator["CorrectionScope"]:
        self._depth += 1
        try:
            yield self
        finally:
            self._depth -= 1


@dataclass
class Correction:
    """What one reconciliation pass did to the player."""
    loaded: bool = False
    rate_corrected: bool = False
    seeked: bool = False
    play_state_corrected: bool = False
    target: Optional[float] = None
    drift: Optional[float] = None


class Reconciler:
    """Keeps a local player in line with relayed room state and reports host edits."""

    def __init__(self, player: PlayerSurface, emit: PatchSink,
                 drift_threshold: float = DRIFT_THRESHOLD,
                 rate_epsilon: float = RATE_EPSILON,
                 clock: Callable[[], float] = now_ms):
        self.player = player
        self.emit = emit
        self.drift_threshold = drift_threshold
        self.rate_epsilon = rate_epsilon
        self.clock = clock
        self.scope = CorrectionScope()
        self.is_host = False
        self.latency_ms = 0.0
        player.subscribe(self.on_player_event)

    @property
    def latency_bias(self) -> float:
        return self.latency_ms / 2

    def record_round_trip(self, sent_ts: float, now: Optional[float] = None) -> float:
        now = self.clock() if now is None else now
        self.latency_ms = max(0.0, now - sent_ts)
        return self.latency_ms

    def target_position(self, state: WireState, now: Optional[float] = None) -> float:
        now = self.clock() if now is None else now
        projected = project_position(state.position, state.playing, state.rate,
                                     state.updatedAt, now, self.latency_bias)
        return clamp_position(projected)

    def apply_remote_state(self, state: Union[Mapping[str, Any], WireState], now: Optional[float] = None) -> Correction:
        if not isinstance(state, WireState):
            state = WireState.model_validate(state)
        correction = Correction()
        if not state.mediaRef:
            return correction

        target = self.target_position(state, now)
        correction.target = target

        with self.scope.applying():
            if self.player.get_media() != state.mediaRef:
                self._load(state, target)
                correction.loaded = True
                return correction
            self._correct(state, target, correction)
        return correction

    def _load(self, state: WireState, target: float) -> None:
        logger.info(f"Loading {state.mediaRef} at {target:.2f}s")
        self.player.load(state.mediaRef, target)
        self.player.set_rate(state.rate or 1.0)

    def _correct(self, state: WireState, target: float, correction: Correction) -> None:
        local = self.player.get_position()
        correction.drift = abs(target - local)

        if abs(self.player.get_rate() - state.rate) > self.rate_epsilon:
            self.player.set_rate(state.rate)
            correction.rate_corrected = True

        if correction.drift > self.drift_threshold:
            logger.debug(f"Drift {correction.drift:.3f}s, seeking to {target:.2f}s")
            self.player.seek(target)
            correction.seeked = True

        playing_now = self.player.get_play_state() == PlayState.PLAYING
        if state.playing != playing_now:
            if state.playing:
                self.player.play()
            else:
                self.player.pause()
            correction.play_state_corrected = True

    def _send_patch(self, patch: Dict[str, Any]) -> bool:
        if not self.is_host or self.scope.active:
            return False
        self.emit(patch)
        return True

    def on_player_event(self, event: PlayerEvent) -> None:
        if not self.is_host or self.scope.active:
            return
        if event.kind == PlayerEventKind.STATE_CHANGE and event.state in (PlayState.PLAYING, PlayState.PAUSED):
            self._send_patch({
                "playing": event.state == PlayState.PLAYING,
                "position": self.player.get_position(),
                "rate": self.player.get_rate(),
            })
        elif event.kind == PlayerEventKind.RATE_CHANGE:
            self._send_patch({
                "rate": self.player.get_rate(),
                "position": self.player.get_position(),
            })

    def seek_by(self, delta: float) -> bool:
        """Host skip control: move the local player and report the new position."""
        if not self.is_host:
            return False
        position = max(0.0, self.player.get_position() + delta)
        with self.scope.applying():
            self.player.seek(position)
        return self._send_patch({"position": position})

    def load_media(self, ref: str) -> bool:
        """Host load control: start `ref` from the beginning for the whole room."""
        if not self.is_host or not ref:
            return False
        with self.scope.applying():
            self.player.load(ref, 0.0)
            self.player.set_rate(1.0)
        return self._send_patch({"mediaRef": ref, "playing": True, "position": 0, "rate": 1})
