"""
Time-weighted statistics over irregularly sampled signals.

Samples are turned into piecewise-constant intervals: sample ``i`` holds
its value over ``[t_i, t_{i+1})``. The last sample holds until
``end_epoch_sec`` when one is given; otherwise it contributes no time,
since an unterminated series cannot claim unmeasured time.

Every statistic weighs a value by how long it was held, not by how many
samples reported it.
"""

import math

from collections.abc import Callable, Sequence
from typing import Any

from prs1core.analysis.types import WeightedInterval

TimeFn = Callable[[Any], int]


def _sample_time(s: Any) -> int:
    return s.t_epoch_sec


def _sample_value(s: Any) -> float:
    return s.value


def build_numeric_intervals(
    samples: Sequence[Any],
    end_epoch_sec: int | None = None,
    time_of: TimeFn = _sample_time,
    value_of: Callable[[Any], float] = _sample_value,
) -> list[WeightedInterval[float]]:
    """
    Build numeric intervals from samples in any order.

    Zero-length intervals (duplicate times, unterminated last sample) and
    non-finite values are skipped.
    """
    ordered = sorted(samples, key=time_of)
    intervals = []
    for i, s in enumerate(ordered):
        t0 = time_of(s)
        if i + 1 < len(ordered):
            t1 = time_of(ordered[i + 1])
        else:
            t1 = end_epoch_sec if end_epoch_sec is not None else t0
        if t1 <= t0:
            continue
        v = float(value_of(s))
        if not math.isfinite(v):
            continue
        intervals.append(WeightedInterval(t0, t1, v))
    return intervals


def build_bool_intervals(
    samples: Sequence[Any],
    end_epoch_sec: int | None = None,
    time_of: TimeFn = _sample_time,
    value_of: Callable[[Any], bool] = lambda s: s.value > 0.5,
) -> list[WeightedInterval[bool]]:
    """Build boolean intervals; by default a sample is on when its value > 0.5."""
    ordered = sorted(samples, key=time_of)
    intervals = []
    for i, s in enumerate(ordered):
        t0 = time_of(s)
        if i + 1 < len(ordered):
            t1 = time_of(ordered[i + 1])
        else:
            t1 = end_epoch_sec if end_epoch_sec is not None else t0
        if t1 <= t0:
            continue
        intervals.append(WeightedInterval(t0, t1, bool(value_of(s))))
    return intervals


def quantile_from_intervals(
    intervals: Sequence[WeightedInterval[float]], q: float
) -> float | None:
    """
    Nearest-rank quantile over time mass.

    Intervals are ordered by value and their seconds accumulated until the
    running total reaches ``max(1, ceil(total * q))``.

    Returns:
        The quantile, or None when the intervals hold no time
    """
    if math.isnan(q):
        return None
    q = min(max(q, 0.0), 1.0)
    total = sum(it.seconds for it in intervals)
    if total <= 0:
        return None

    target = max(1, math.ceil(total * q))
    weighted = sorted((it for it in intervals if it.seconds > 0), key=lambda it: it.value)
    cumulative = 0
    for it in weighted:
        cumulative += it.seconds
        if cumulative >= target:
            return it.value
    return weighted[-1].value


def fraction_over_from_intervals(
    intervals: Sequence[WeightedInterval[float]], threshold: float
) -> float | None:
    """Share of time with value strictly above ``threshold``."""
    total = sum(it.seconds for it in intervals)
    if total <= 0:
        return None
    over = sum(it.seconds for it in intervals if it.value > threshold)
    return over / total


def min_value(intervals: Sequence[WeightedInterval[float]]) -> float | None:
    """Smallest value, zero-width intervals included."""
    return min((it.value for it in intervals), default=None)


def max_value(intervals: Sequence[WeightedInterval[float]]) -> float | None:
    """Largest value, zero-width intervals included."""
    return max((it.value for it in intervals), default=None)


class TimeWeightedStats:
    """
    Time-weighted statistics for one sample series.

    Intervals are built once on construction and shared by every query.

    Example:
        >>> stats = TimeWeightedStats(pressure_samples, end_epoch_sec=session_end)
        >>> stats.weighted_median(), stats.fraction_over(12.0)
    """

    def __init__(
        self,
        samples: Sequence[Any],
        end_epoch_sec: int | None = None,
        time_of: TimeFn = _sample_time,
        value_of: Callable[[Any], float] = _sample_value,
    ):
        self.samples = samples
        self.end_epoch_sec = end_epoch_sec
        self._time_of = time_of
        self._value_of = value_of
        self.intervals = build_numeric_intervals(samples, end_epoch_sec, time_of, value_of)

    def total_seconds(self) -> int:
        return sum(it.seconds for it in self.intervals)

    def weighted_quantile(self, q: float) -> float | None:
        return quantile_from_intervals(self.intervals, q)

    def weighted_median(self) -> float | None:
        return self.weighted_quantile(0.5)

    def weighted_p95(self) -> float | None:
        return self.weighted_quantile(0.95)

    def fraction_over(self, threshold: float) -> float | None:
        return fraction_over_from_intervals(self.intervals, threshold)

    def fraction_in_range(self, low: float, high: float) -> float | None:
        """Share of time with ``low <= value <= high``."""
        total = self.total_seconds()
        if total <= 0:
            return None
        return self.time_in_range_seconds(low, high) / total

    def time_above_seconds(self, threshold: float) -> int:
        return sum(it.seconds for it in self.intervals if it.value > threshold)

    def time_below_seconds(self, threshold: float) -> int:
        return sum(it.seconds for it in self.intervals if it.value < threshold)

    def time_in_range_seconds(self, low: float, high: float) -> int:
        return sum(it.seconds for it in self.intervals if low <= it.value <= high)

    def duty_cycle(self, on_threshold: float = 0.5) -> float | None:
        """Share of time a boolean-like series is on (value > ``on_threshold``)."""
        intervals = build_bool_intervals(
            self.samples,
            self.end_epoch_sec,
            self._time_of,
            lambda s: self._value_of(s) > on_threshold,
        )
        total = sum(it.seconds for it in intervals)
        if total <= 0:
            return None
        return sum(it.seconds for it in intervals if it.value) / total
