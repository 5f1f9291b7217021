"""
Calendar bucket models produced by the daily and trend aggregators.

Day buckets follow local calendar days in the configured time zone; their
epoch-second bounds are stored so consumers never redo the zone math.
"""

from datetime import date

from pydantic import BaseModel, ConfigDict, Field

from prs1core.analysis.types import (
    EpisodeCorrelationSummary,
    EpisodeLink,
    SnoreEpisode,
    TimePoint,
    ValueEpisode,
)
from prs1core.models.events import Event, EventType, SignalKind, SignalSample
from prs1core.models.session import Session


class SessionSlice(BaseModel):
    """The part of a session that falls inside one day bucket."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    session: Session = Field(exclude=True, description="Session the slice belongs to")
    start_epoch_sec: int = Field(description="Slice start (UNIX seconds)")
    end_epoch_sec: int = Field(description="Slice end, exclusive (UNIX seconds)")

    @property
    def duration_seconds(self) -> int:
        return max(0, self.end_epoch_sec - self.start_epoch_sec)

    def contains(self, t_epoch_sec: int) -> bool:
        return self.start_epoch_sec <= t_epoch_sec < self.end_epoch_sec


class MetricSummary(BaseModel):
    """Median, 95th percentile and range of one metric over a day."""

    median: float | None = None
    p95: float | None = None
    min: float | None = None
    max: float | None = None


class DailyBucket(BaseModel):
    """Everything computed for one local calendar day."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    day: date = Field(description="Local calendar day")
    day_start_sec: int = Field(description="Local midnight (UNIX seconds)")
    day_end_sec: int = Field(description="Next local midnight (UNIX seconds)")

    slices: list[SessionSlice] = Field(default_factory=list)
    events: list[Event] = Field(default_factory=list, description="Events inside slices")
    samples: dict[SignalKind, list[SignalSample]] = Field(
        default_factory=dict, description="Signal samples inside slices, by kind"
    )

    usage_seconds: int = Field(default=0, ge=0, description="Therapy time in the day")
    event_counts: dict[EventType, int] = Field(default_factory=dict)

    ahi: float | None = Field(default=None, description="(OA + CA + H) per usage hour")
    peak_ahi_30m: float | None = Field(
        default=None, description="Largest trailing 30-minute rolling AHI"
    )
    snore_count: int = 0
    snore_per_hour: float | None = None
    relief_duty_cycle: float | None = Field(
        default=None, description="Share of time pressure relief was active"
    )

    pressure: MetricSummary = Field(default_factory=MetricSummary)
    leak: MetricSummary = Field(default_factory=MetricSummary)
    leak_percent_over: float | None = Field(
        default=None, description="Percent of time leak exceeded the threshold"
    )

    tidal_volume: MetricSummary = Field(default_factory=MetricSummary)
    resp_rate: MetricSummary = Field(default_factory=MetricSummary)
    minute_ventilation: MetricSummary = Field(default_factory=MetricSummary)
    insp_time: MetricSummary = Field(default_factory=MetricSummary)
    exp_time: MetricSummary = Field(default_factory=MetricSummary)
    ie_ratio: MetricSummary = Field(default_factory=MetricSummary)
    breath_count: int = 0

    flow_limitation: MetricSummary = Field(
        default_factory=MetricSummary,
        description="Breath flattening score, or FL events/hour without a flow waveform",
    )
    fl_breath_series: list[TimePoint] = Field(default_factory=list)
    fl_minute_median: list[TimePoint] = Field(default_factory=list)
    fl_ema_5m: list[TimePoint] = Field(default_factory=list)
    fl_ema_15m: list[TimePoint] = Field(default_factory=list)
    fl_bands_5m: list[int] = Field(default_factory=list)
    fl_bands_15m: list[int] = Field(default_factory=list)

    snore_heatmap: list[int] = Field(default_factory=list, description="Per-minute snore counts")
    snore_heatmap_max: int = 0
    snore_episodes: list[SnoreEpisode] = Field(default_factory=list)
    snore_episode_total_seconds: int = 0
    snore_episode_max_peak_per_min: float | None = None

    leak_episodes: list[ValueEpisode] = Field(default_factory=list)
    high_fl_episodes: list[ValueEpisode] = Field(default_factory=list)
    episode_links: list[EpisodeLink] = Field(default_factory=list)
    episode_summary: EpisodeCorrelationSummary | None = None

    rolling_ahi: dict[int, list[TimePoint]] = Field(
        default_factory=dict, description="Rolling AHI per minute, keyed by window minutes"
    )

    @property
    def minutes(self) -> int:
        return (self.day_end_sec - self.day_start_sec) // 60

    @property
    def usage_hours(self) -> float:
        return self.usage_seconds / 3600.0

    @property
    def snore_episode_count(self) -> int:
        return len(self.snore_episodes)

    @property
    def leak_episode_count(self) -> int:
        return len(self.leak_episodes)

    @property
    def leak_episode_total_seconds(self) -> int:
        return sum(e.duration_sec for e in self.leak_episodes)

    def samples_of(self, kind: SignalKind) -> list[SignalSample]:
        return self.samples.get(kind, [])


class TrendBucket(BaseModel):
    """Roll-up of consecutive day buckets."""

    period_start: date = Field(description="First local day of the period")
    period_end_exclusive: date = Field(description="First local day after the period")
    days: list[date] = Field(default_factory=list, description="Days with a bucket")
    days_used: int = Field(default=0, description="Days with any therapy time")
    usage_seconds: int = 0
    event_counts: dict[EventType, int] = Field(default_factory=dict)
    ahi: float | None = Field(default=None, description="Recomputed from summed counts")
    snore_count: int = 0
    pressure_median: float | None = Field(default=None, description="Usage-weighted mean")
    pressure_p95: float | None = Field(default=None, description="Usage-weighted mean")
    leak_median: float | None = Field(default=None, description="Usage-weighted mean")
    leak_p95: float | None = Field(default=None, description="Usage-weighted mean")
    leak_percent_over: float | None = Field(default=None, description="Usage-weighted mean")

    @property
    def usage_hours(self) -> float:
        return self.usage_seconds / 3600.0


class WeeklyBucket(TrendBucket):
    """ISO week, Monday through Sunday."""

    @property
    def iso_week(self) -> tuple[int, int]:
        year, week, _ = self.period_start.isocalendar()
        return year, week


class MonthlyBucket(TrendBucket):
    """Calendar month."""

    @property
    def label(self) -> str:
        return self.period_start.strftime("%Y-%m")
