import time


def now_ms() -> int:
    """Wall clock in epoch milliseconds, the unit carried in `updatedAt`."""
    return int(time.time() * 1000)


def project_position(position: float, playing: bool, rate: float, updated_at: float,
                     now: float, latency_bias: float = 0.0) -> float:
    """Extrapolate a stored playback position to `now`.

    `updated_at`, `now` and `latency_bias` are milliseconds; the result is seconds.
    A paused state is returned unchanged. The result is not clamped, see
    `clamp_position`.
    """
    if not playing:
        return position
    return position + rate * (now - updated_at + latency_bias) / 1000


def clamp_position(position: float) -> float:
    return max(0.0, position)
