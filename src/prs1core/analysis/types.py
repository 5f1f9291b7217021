"""
Value types shared by the analysis modules.

Times are epoch seconds unless the field name says ``_ms``.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T", float, bool)


@dataclass(frozen=True)
class TimePoint:
    """One point of a time series; ``value`` is None where undefined."""

    t_epoch_sec: int
    value: float | None


@dataclass(frozen=True)
class WeightedInterval(Generic[T]):
    """A value held over ``[t0, t1)``."""

    t0: int
    t1: int
    value: T

    @property
    def seconds(self) -> int:
        return max(0, self.t1 - self.t0)


@dataclass(frozen=True)
class ValueEpisode:
    """
    A merged run of qualifying time.

    Attributes:
        start_sec: Episode start (epoch seconds)
        end_sec_exclusive: Episode end (epoch seconds, exclusive)
        max_value: Largest qualifying value
        mean_value: Time-weighted mean of qualifying values
    """

    start_sec: int
    end_sec_exclusive: int
    max_value: float
    mean_value: float

    @property
    def duration_sec(self) -> int:
        return max(0, self.end_sec_exclusive - self.start_sec)

    def overlaps_ms(self, start_ms: int, end_ms_exclusive: int) -> bool:
        return (
            self.start_sec * 1000 < end_ms_exclusive
            and self.end_sec_exclusive * 1000 > start_ms
        )


@dataclass(frozen=True)
class SnoreEpisode:
    """A cluster of snore events."""

    start_epoch_ms: int
    end_epoch_ms_exclusive: int
    count: int
    duration_sec: int
    density_per_min: float
    peak_per_min_60s: float

    def overlaps(self, start_ms: int, end_ms_exclusive: int) -> bool:
        return self.start_epoch_ms < end_ms_exclusive and self.end_epoch_ms_exclusive > start_ms


@dataclass(frozen=True)
class EpisodeLink:
    """Overlap of one snore episode with leak and high flow-limitation episodes."""

    snore_episode_index: int
    snore_start_epoch_ms: int
    snore_end_epoch_ms_exclusive: int
    overlap_leak_seconds: int
    overlap_high_fl_seconds: int

    @property
    def snore_duration_seconds(self) -> int:
        return max(0, (self.snore_end_epoch_ms_exclusive - self.snore_start_epoch_ms) // 1000)

    @property
    def has_leak_overlap(self) -> bool:
        return self.overlap_leak_seconds > 0

    @property
    def has_high_fl_overlap(self) -> bool:
        return self.overlap_high_fl_seconds > 0

    @property
    def has_both(self) -> bool:
        return self.has_leak_overlap and self.has_high_fl_overlap


@dataclass(frozen=True)
class EpisodeCorrelationSummary:
    """Tallies across all episode links of a day."""

    snore_episode_count: int = 0
    with_leak_overlap: int = 0
    with_high_fl_overlap: int = 0
    with_both_overlap: int = 0
    total_leak_overlap_seconds: int = 0
    total_high_fl_overlap_seconds: int = 0
