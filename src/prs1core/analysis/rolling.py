"""
Minute-resolution rolling metrics for one day.

All series are indexed by minute from ``day_start_sec``. Rolling AHI uses
prefix sums so each minute costs O(1) after O(n) setup. A minute whose
trailing window holds no usage reports None rather than 0.
"""

import math
import statistics

from collections.abc import Callable, Sequence
from itertools import accumulate

from prs1core.analysis.types import TimePoint
from prs1core.models.breath import Breath
from prs1core.models.events import Event


def usage_seconds_per_minute(
    day_start_sec: int, minutes: int, slices: Sequence[tuple[int, int]]
) -> list[int]:
    """
    Seconds of therapy in each minute, from ``(start, end_exclusive)`` slices.

    Overlapping slices may add up past 60; each minute is clamped to [0, 60].
    """
    out = [0] * minutes
    day_end = day_start_sec + minutes * 60
    for a, b in slices:
        start, end = max(a, day_start_sec), min(b, day_end)
        cur = start
        while cur < end:
            idx = (cur - day_start_sec) // 60
            seg_end = min(end, day_start_sec + (idx + 1) * 60)
            out[idx] += seg_end - cur
            cur = seg_end
    return [min(max(v, 0), 60) for v in out]


def ahi_event_counts_per_minute(
    day_start_sec: int, minutes: int, events: Sequence[Event]
) -> list[int]:
    """OA + CA + H events per minute."""
    out = [0] * minutes
    for e in events:
        if not e.type.counts_toward_ahi:
            continue
        idx = (e.t_epoch_sec - day_start_sec) // 60
        if 0 <= idx < minutes:
            out[idx] += 1
    return out


def rolling_ahi(
    day_start_sec: int,
    minutes: int,
    usage_seconds: Sequence[int],
    event_counts: Sequence[int],
    window_minutes: int,
) -> list[TimePoint]:
    """
    Trailing-window AHI per minute.

    Returns:
        One point per minute, or an empty list if inputs are inconsistent
    """
    if (
        minutes <= 0
        or window_minutes <= 0
        or len(usage_seconds) != minutes
        or len(event_counts) != minutes
    ):
        return []

    pref_use = [0, *accumulate(usage_seconds)]
    pref_evt = [0, *accumulate(event_counts)]

    out = []
    for i in range(minutes):
        lo = max(0, i - window_minutes + 1)
        use = pref_use[i + 1] - pref_use[lo]
        evt = pref_evt[i + 1] - pref_evt[lo]
        ahi = evt / (use / 3600.0) if use > 0 else None
        out.append(TimePoint(day_start_sec + i * 60, ahi))
    return out


def _values_per_minute(
    day_start_sec: int,
    minutes: int,
    breaths: Sequence[Breath],
    value_of: Callable[[Breath], float | None],
) -> list[list[float]]:
    per_minute: list[list[float]] = [[] for _ in range(minutes)]
    for b in breaths:
        v = value_of(b)
        if v is None or not math.isfinite(v):
            continue
        idx = (b.start_epoch_ms // 1000 - day_start_sec) // 60
        if 0 <= idx < minutes:
            per_minute[idx].append(v)
    return per_minute


def _window_start(i: int, window_minutes: int, minutes: int) -> int:
    return min(max(i - window_minutes + 1, 0), minutes - 1)


def rolling_breath_median(
    day_start_sec: int,
    minutes: int,
    breaths: Sequence[Breath],
    window_minutes: int,
    value_of: Callable[[Breath], float | None],
) -> list[TimePoint]:
    """Median of a breath metric over each trailing window; None when empty."""
    per_minute = _values_per_minute(day_start_sec, minutes, breaths, value_of)
    out = []
    for i in range(minutes):
        window = [
            v for k in range(_window_start(i, window_minutes, minutes), i + 1)
            for v in per_minute[k]
        ]
        out.append(
            TimePoint(day_start_sec + i * 60, statistics.median(window) if window else None)
        )
    return out


def rolling_breath_mean(
    day_start_sec: int,
    minutes: int,
    breaths: Sequence[Breath],
    window_minutes: int,
    value_of: Callable[[Breath], float | None],
) -> list[TimePoint]:
    """Mean of a breath metric over each trailing window; None when empty."""
    per_minute = _values_per_minute(day_start_sec, minutes, breaths, value_of)
    sums = [0.0, *accumulate(sum(vs) for vs in per_minute)]
    counts = [0, *accumulate(len(vs) for vs in per_minute)]
    out = []
    for i in range(minutes):
        lo = _window_start(i, window_minutes, minutes)
        n = counts[i + 1] - counts[lo]
        mean = (sums[i + 1] - sums[lo]) / n if n else None
        out.append(TimePoint(day_start_sec + i * 60, mean))
    return out


def snore_heatmap_counts(
    day_start_sec: int, minutes: int, events: Sequence[Event]
) -> list[int]:
    """
    Snore intensity per minute.

    Snore, VS and VS2 events add their rounded value, or 1 when the value
    is missing or not positive.
    """
    out = [0] * minutes
    day_end = day_start_sec + minutes * 60
    for e in events:
        if not e.type.is_snore_like:
            continue
        if not day_start_sec <= e.t_epoch_sec < day_end:
            continue
        v = round(e.value) if e.value is not None and math.isfinite(e.value) else 1
        out[(e.t_epoch_sec - day_start_sec) // 60] += v if v > 0 else 1
    return out


def heatmap_max(counts: Sequence[int]) -> int:
    return max(counts, default=0)
