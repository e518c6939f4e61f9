"""Tests for the participant-side reconciler and the headless player."""

from __future__ import annotations

from typing import Any, Dict, List

import pytest

from participant.player import PlayerEventKind, PlayState, SimulatedPlayer
from participant.reconciler import Reconciler
from schemas.messages import WireState

NOW = 50_000


class ManualTime:
    """Monotonic seconds for the simulated player."""

    def __init__(self) -> None:
        self.t = 100.0

    def __call__(self) -> float:
        return self.t


@pytest.fixture()
def player_time() -> ManualTime:
    return ManualTime()


@pytest.fixture()
def player(player_time: ManualTime) -> SimulatedPlayer:
    return SimulatedPlayer(clock=player_time)


@pytest.fixture()
def sent() -> List[Dict[str, Any]]:
    return []


@pytest.fixture()
def reconciler(player: SimulatedPlayer, sent: List[Dict[str, Any]]) -> Reconciler:
    return Reconciler(player, sent.append, clock=lambda: NOW)


def _state(**overrides: Any) -> Dict[str, Any]:
    state = {"mediaRef": "abc12345678", "playing": False, "position": 0.0, "rate": 1.0, "updatedAt": NOW}
    state.update(overrides)
    return state


def _load_paused(player: SimulatedPlayer, position: float) -> None:
    player.load("abc12345678", position)
    player.pause()


def test_new_media_is_loaded_at_projected_position(reconciler: Reconciler, player: SimulatedPlayer) -> None:
    reconciler.latency_ms = 200
    correction = reconciler.apply_remote_state(_state(playing=True, position=10.0, rate=2.0, updatedAt=NOW - 1_000))
    assert correction.loaded is True
    assert player.get_media() == "abc12345678"
    # 10 + 2 * (1000 + 100) / 1000
    assert player.get_position() == pytest.approx(12.2)
    assert player.get_rate() == 2.0
    # no drift or play-state pass on the same cycle
    assert correction.seeked is False and correction.play_state_corrected is False


def test_empty_media_ref_is_ignored(reconciler: Reconciler, player: SimulatedPlayer) -> None:
    correction = reconciler.apply_remote_state(_state(mediaRef=""))
    assert correction.loaded is False
    assert player.get_media() == ""


def test_drift_under_threshold_is_left_alone(reconciler: Reconciler, player: SimulatedPlayer) -> None:
    _load_paused(player, 5.0)
    correction = reconciler.apply_remote_state(_state(position=5.30))
    assert correction.drift == pytest.approx(0.30)
    assert correction.seeked is False
    assert player.get_position() == 5.0


def test_drift_over_threshold_triggers_seek(reconciler: Reconciler, player: SimulatedPlayer) -> None:
    _load_paused(player, 5.0)
    correction = reconciler.apply_remote_state(_state(position=5.40))
    assert correction.drift == pytest.approx(0.40)
    assert correction.seeked is True
    assert player.get_position() == pytest.approx(5.40)


def test_rate_and_play_state_are_corrected(reconciler: Reconciler, player: SimulatedPlayer) -> None:
    _load_paused(player, 5.0)
    correction = reconciler.apply_remote_state(_state(position=5.0, playing=True, rate=1.5))
    assert correction.rate_corrected is True
    assert correction.play_state_corrected is True
    assert player.get_rate() == 1.5
    assert player.get_play_state() == PlayState.PLAYING

    correction = reconciler.apply_remote_state(_state(position=5.0, playing=False, rate=1.505))
    assert correction.rate_corrected is False
    assert player.get_play_state() == PlayState.PAUSED


def test_corrections_do_not_echo_as_host_patches(reconciler: Reconciler, player: SimulatedPlayer,
                                                 sent: List[Dict[str, Any]]) -> None:
    reconciler.is_host = True
    reconciler.apply_remote_state(_state(playing=True, position=3.0))
    reconciler.apply_remote_state(_state(playing=False, position=9.0, rate=2.0))
    assert sent == []
    assert reconciler.scope.active is False


def test_host_player_transitions_emit_patches(reconciler: Reconciler, player: SimulatedPlayer,
                                              player_time: ManualTime, sent: List[Dict[str, Any]]) -> None:
    _load_paused(player, 0.0)
    reconciler.is_host = True

    player.play()
    player_time.t += 4
    player.pause()
    player.set_rate(1.25)

    assert sent == [
        {"playing": True, "position": 0.0, "rate": 1.0},
        {"playing": False, "position": pytest.approx(4.0), "rate": 1.0},
        {"rate": 1.25, "position": pytest.approx(4.0)},
    ]


def test_non_host_player_transitions_are_not_reported(reconciler: Reconciler, player: SimulatedPlayer,
                                                      sent: List[Dict[str, Any]]) -> None:
    _load_paused(player, 0.0)
    player.play()
    player.set_rate(2.0)
    assert reconciler.seek_by(5) is False
    assert reconciler.load_media("zzzzzzzzzzz") is False
    assert sent == []


def test_host_skip_sends_only_position(reconciler: Reconciler, player: SimulatedPlayer,
                                       sent: List[Dict[str, Any]]) -> None:
    _load_paused(player, 3.0)
    reconciler.is_host = True
    assert reconciler.seek_by(-5) is True
    assert reconciler.seek_by(10) is True
    assert sent == [{"position": 0.0}, {"position": 10.0}]
    assert player.get_position() == 10.0


def test_host_load_resets_room_playback(reconciler: Reconciler, player: SimulatedPlayer,
                                        sent: List[Dict[str, Any]]) -> None:
    reconciler.is_host = True
    assert reconciler.load_media("abc12345678") is True
    # the load itself fires player events; only the explicit patch goes out
    assert sent == [{"mediaRef": "abc12345678", "playing": True, "position": 0, "rate": 1}]
    assert player.get_play_state() == PlayState.PLAYING


def test_round_trip_feeds_latency_bias(reconciler: Reconciler) -> None:
    assert reconciler.record_round_trip(NOW - 120) == 120
    assert reconciler.latency_bias == 60
    state = WireState(mediaRef="m", playing=True, position=1.0, rate=1.0, updatedAt=NOW)
    target = reconciler.target_position(state)
    assert target == pytest.approx(1.06)


def test_simulated_player_reports_ready_and_tracks_time(player: SimulatedPlayer, player_time: ManualTime) -> None:
    events = []
    player.subscribe(events.append)
    assert events[0].kind == PlayerEventKind.READY

    player.load("abc12345678", 2.0)
    player_time.t += 3
    assert player.get_position() == pytest.approx(5.0)
    player.set_rate(2.0)
    player_time.t += 1
    assert player.get_position() == pytest.approx(7.0)
    player.pause()
    player_time.t += 10
    assert player.get_position() == pytest.approx(7.0)
    assert [e.kind for e in events[1:]] == [
        PlayerEventKind.STATE_CHANGE, PlayerEventKind.RATE_CHANGE, PlayerEventKind.STATE_CHANGE,
    ]
