"""
Continuous flow limitation indicator.

Each inspiration gets a flattening score in [0, 1] from the ratio of its
mean to its peak positive flow: a flat-topped (limited) inspiration has a
ratio near 0.85, a rounded one near 0.5. Scores are then bucketed into
per-minute medians, smoothed with an EMA and banded by severity.
"""

import math

from collections.abc import Sequence

import numpy as np

from prs1core.analysis.breath_analyzer import smooth3
from prs1core.analysis.types import TimePoint
from prs1core.constants import BreathAnalysisConstants, FlowLimitationConstants
from prs1core.models.breath import Breath
from prs1core.models.waveform import WaveformChannel


def score_breath(
    flow: WaveformChannel,
    breath: Breath,
    zero_eps: float = BreathAnalysisConstants.ZERO_EPS,
    smoothed: np.ndarray | None = None,
) -> float | None:
    """
    Flattening score of one inspiration.

    Args:
        flow: Flow waveform the breath was segmented from
        breath: Breath to score
        zero_eps: Samples at or below this are ignored
        smoothed: Precomputed ``smooth3(flow.samples)`` to reuse across breaths

    Returns:
        Score in [0, 1], or None when the inspiration is too short
    """
    if len(flow) == 0:
        return None
    i0 = flow.nearest_index(breath.start_epoch_ms)
    i1 = flow.nearest_index(breath.insp_end_epoch_ms)
    if i1 <= i0 + 2:
        return None

    if smoothed is None:
        smoothed = smooth3(flow.samples)
    window = smoothed[i0 : i1 + 1]
    positive = window[window > zero_eps]
    if len(positive) < FlowLimitationConstants.MIN_SAMPLES:
        return None

    peak = float(positive.max())
    if peak <= 0:
        return None
    ratio = min(max(float(positive.mean()) / peak, 0.0), 1.0)
    low, high = FlowLimitationConstants.RATIO_LOW, FlowLimitationConstants.RATIO_HIGH
    score = min(max((ratio - low) / (high - low), 0.0), 1.0)
    return None if math.isnan(score) else score


def series_from_breaths(
    flow: WaveformChannel,
    breaths: Sequence[Breath],
    zero_eps: float = BreathAnalysisConstants.ZERO_EPS,
) -> list[TimePoint]:
    """Breath-resolution score series, stamped at each breath start second."""
    if len(flow) < 3 or not breaths:
        return []
    smoothed = smooth3(flow.samples)
    points = []
    for b in breaths:
        score = score_breath(flow, b, zero_eps=zero_eps, smoothed=smoothed)
        if score is not None:
            points.append(TimePoint(b.start_epoch_ms // 1000, score))
    return points


def minute_median_series(
    breath_series: Sequence[TimePoint], day_start_sec: int, minutes: int
) -> list[TimePoint]:
    """
    Per-minute median of breath scores over a fixed-length day.

    Minutes without scores hold NaN so gaps survive plotting.
    """
    buckets: dict[int, list[float]] = {}
    day_end = day_start_sec + minutes * 60
    for p in breath_series:
        if p.value is None or math.isnan(p.value):
            continue
        if not day_start_sec <= p.t_epoch_sec < day_end:
            continue
        buckets.setdefault((p.t_epoch_sec - day_start_sec) // 60, []).append(p.value)

    return [
        TimePoint(
            day_start_sec + i * 60,
            float(np.median(buckets[i])) if i in buckets else math.nan,
        )
        for i in range(minutes)
    ]


def ema_series(
    minute_series: Sequence[TimePoint],
    window_minutes: int = FlowLimitationConstants.EMA_SHORT_MINUTES,
) -> list[TimePoint]:
    """
    Exponential moving average with alpha ``2 / (window + 1)``.

    Missing minutes stay missing and do not update the running average.
    """
    alpha = 2.0 / (window_minutes + 1.0)
    ema: float | None = None
    out = []
    for p in minute_series:
        x = p.value
        if x is None or math.isnan(x):
            out.append(TimePoint(p.t_epoch_sec, math.nan))
            continue
        ema = x if ema is None else alpha * x + (1.0 - alpha) * ema
        out.append(TimePoint(p.t_epoch_sec, ema))
    return out


def severity_band(value: float | None) -> int:
    """0 below 0.1, 1 below 0.3, 2 above; -1 for missing."""
    if value is None or math.isnan(value):
        return FlowLimitationConstants.BAND_MISSING
    if value < FlowLimitationConstants.BAND_MILD:
        return 0
    if value < FlowLimitationConstants.BAND_HIGH:
        return 1
    return FlowLimitationConstants.HIGH_BAND


def banded_severity(minute_series: Sequence[TimePoint]) -> list[int]:
    return [severity_band(p.value) for p in minute_series]
