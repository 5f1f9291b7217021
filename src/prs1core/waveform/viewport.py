"""
Viewport queries for chart rendering.

A viewport is an epoch-ms window. Waveforms are reduced to a min/max
envelope with at most ``max_buckets`` points; day-level series and
episodes are sliced to the same window.
"""

import math

from collections.abc import Iterable, Iterator
from dataclasses import dataclass

import numpy as np

from pydantic import BaseModel, Field

from prs1core.analysis.types import EpisodeLink, SnoreEpisode, TimePoint, ValueEpisode
from prs1core.constants import DEFAULT_MAX_BUCKETS
from prs1core.models.buckets import DailyBucket
from prs1core.models.events import Event, SignalKind
from prs1core.waveform.index import TRACK_KINDS, WaveformIndex


@dataclass(frozen=True)
class MinMaxPoint:
    """Envelope of one bucket; NaN min/max where the bucket has no data."""

    t_epoch_ms: int
    min: float
    max: float

    @property
    def is_gap(self) -> bool:
        return math.isnan(self.min)


def _buckets(start_ms: int, end_ms: int, max_buckets: int) -> Iterator[tuple[int, int]]:
    bucket_ms = max(1, math.ceil((end_ms - start_ms) / max_buckets))
    b_start = start_ms
    while b_start < end_ms:
        b_end = min(end_ms, b_start + bucket_ms)
        yield b_start, b_end
        b_start = b_end


def query_envelope(
    index: WaveformIndex,
    kind: SignalKind,
    start_ms: int,
    end_ms: int,
    max_buckets: int = DEFAULT_MAX_BUCKETS,
) -> list[MinMaxPoint]:
    """
    Min/max envelope of one track over ``[start_ms, end_ms)``.

    Each bucket scans the sample indices covering it, inclusive at both
    ends, so neighbouring buckets share an edge sample and narrow buckets
    still see two samples. Points are stamped at the bucket midpoint.

    Args:
        index: Waveform index to read from
        kind: Track to query
        start_ms: Window start (epoch ms)
        end_ms: Window end, exclusive (epoch ms)
        max_buckets: Upper bound on the number of points

    Returns:
        Envelope points, or an empty list for an empty window
    """
    if end_ms <= start_ms or max_buckets <= 0:
        return []

    segments = index.track(kind)
    out = []
    for b_start, b_end in _buckets(start_ms, end_ms, max_buckets):
        lo = hi = math.nan
        for seg in segments:
            if seg.end_epoch_ms_exclusive <= b_start:
                continue
            if seg.start_epoch_ms >= b_end:
                break
            i0 = seg.index_at(max(b_start, seg.start_epoch_ms))
            i1 = seg.index_at(min(b_end, seg.end_epoch_ms_exclusive))
            if i1 < i0:
                i0, i1 = i1, i0
            if i1 == i0:
                i1 = min(len(seg) - 1, i0 + 1)

            window = seg.samples[i0 : i1 + 1]
            window = window[~np.isnan(window)]
            if window.size == 0:
                continue
            w_min, w_max = float(window.min()), float(window.max())
            lo = w_min if math.isnan(lo) else min(lo, w_min)
            hi = w_max if math.isnan(hi) else max(hi, w_max)

        out.append(MinMaxPoint(b_start + (b_end - b_start) // 2, lo, hi))
    return out


class ViewportResult(BaseModel):
    """Everything a chart needs to draw one window of one day."""

    start_ms: int = Field(description="Window start (epoch ms)")
    end_ms: int = Field(description="Window end, exclusive (epoch ms)")
    envelopes: dict[SignalKind, list[MinMaxPoint]] = Field(default_factory=dict)
    events: list[Event] = Field(default_factory=list)
    fl_breath_points: list[TimePoint] = Field(default_factory=list)
    fl_minute_median: list[TimePoint] = Field(default_factory=list)
    fl_ema_5m: list[TimePoint] = Field(default_factory=list)
    fl_ema_15m: list[TimePoint] = Field(default_factory=list)
    fl_bands_5m: list[int] = Field(default_factory=list)
    fl_bands_15m: list[int] = Field(default_factory=list)
    snore_heatmap: list[TimePoint] = Field(
        default_factory=list, description="Per-minute snore counts in the window"
    )
    snore_episodes: list[SnoreEpisode] = Field(default_factory=list)
    leak_episodes: list[ValueEpisode] = Field(default_factory=list)
    episode_links: list[EpisodeLink] = Field(default_factory=list)


def _minute_range(bucket: DailyBucket, start_ms: int, end_ms: int) -> tuple[int, int]:
    """Minute indices ``[i0, i1)`` of the day covering the window."""
    start_sec = start_ms // 1000
    end_sec = (end_ms + 999) // 1000
    offset = start_sec - bucket.day_start_sec
    i0 = offset // 60 if offset > 0 else 0
    i1 = (end_sec - bucket.day_start_sec + 59) // 60
    minutes = bucket.minutes
    return min(max(i0, 0), minutes), min(max(i1, 0), minutes)


def viewport_for_day(
    index: WaveformIndex,
    bucket: DailyBucket,
    start_ms: int,
    end_ms: int,
    max_buckets: int = DEFAULT_MAX_BUCKETS,
    kinds: Iterable[SignalKind] = TRACK_KINDS,
) -> ViewportResult:
    """
    Slice a day bucket and the waveform index to one window.

    Events and breath points are kept when they start inside the window;
    episodes and links when they overlap it.
    """
    if end_ms <= start_ms:
        return ViewportResult(start_ms=start_ms, end_ms=end_ms)

    start_sec = start_ms // 1000
    end_sec = (end_ms + 999) // 1000
    i0, i1 = _minute_range(bucket, start_ms, end_ms)

    return ViewportResult(
        start_ms=start_ms,
        end_ms=end_ms,
        envelopes={
            kind: query_envelope(index, kind, start_ms, end_ms, max_buckets)
            for kind in kinds
        },
        events=[e for e in bucket.events if start_ms <= e.epoch_ms < end_ms],
        fl_breath_points=[
            p for p in bucket.fl_breath_series if start_sec <= p.t_epoch_sec < end_sec
        ],
        fl_minute_median=bucket.fl_minute_median[i0:i1],
        fl_ema_5m=bucket.fl_ema_5m[i0:i1],
        fl_ema_15m=bucket.fl_ema_15m[i0:i1],
        fl_bands_5m=bucket.fl_bands_5m[i0:i1],
        fl_bands_15m=bucket.fl_bands_15m[i0:i1],
        snore_heatmap=[
            TimePoint(bucket.day_start_sec + i * 60, float(bucket.snore_heatmap[i]))
            for i in range(i0, min(i1, len(bucket.snore_heatmap)))
        ],
        snore_episodes=[
            ep for ep in bucket.snore_episodes if ep.overlaps(start_ms, end_ms)
        ],
        leak_episodes=[
            ep for ep in bucket.leak_episodes if ep.overlaps_ms(start_ms, end_ms)
        ],
        episode_links=[
            link
            for link in bucket.episode_links
            if link.snore_start_epoch_ms < end_ms and link.snore_end_epoch_ms_exclusive > start_ms
        ],
    )
