"""Tests for playback position projection."""

from __future__ import annotations

import math

from clock import clamp_position, project_position


def test_playing_state_advances_with_rate() -> None:
    assert math.isclose(project_position(10.0, True, 2.0, 5_000, 6_000), 12.0)


def test_paused_state_is_not_extrapolated() -> None:
    assert project_position(10.0, False, 2.0, 5_000, 60_000) == 10.0
    assert project_position(10.0, False, 2.0, 5_000, 60_000, latency_bias=250) == 10.0


def test_latency_bias_counts_as_elapsed_time() -> None:
    # 1000ms elapsed plus 500ms of one-way latency at normal rate
    assert math.isclose(project_position(3.0, True, 1.0, 0, 1_000, latency_bias=500), 4.5)


def test_projection_is_deterministic() -> None:
    args = (7.25, True, 1.5, 123_456, 124_000, 40.0)
    assert project_position(*args) == project_position(*args)


def test_clamp_position_floors_at_zero() -> None:
    assert clamp_position(-3.0) == 0.0
    assert clamp_position(4.2) == 4.2
