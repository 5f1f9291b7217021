"""
Daily, weekly and monthly aggregation.

Topology:
    absolute time (epoch seconds)
    -> local day bucket [midnight, next midnight)
    -> session slices
    -> signal samples, events, breaths

Daily statistics are recomputed from the slices rather than copied from
per-session summaries: AHI from event counts over usage hours, pressure
and leak from time-weighted intervals clamped to each slice, and breath
metrics from the flow waveform. Weekly and monthly buckets roll up the
day buckets using usage-weighted means.
"""

import bisect
import logging
import math

from collections import Counter, defaultdict
from collections.abc import Iterable, Sequence
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import numpy as np

from prs1core.analysis.breath_analyzer import BreathAnalyzer, smooth3
from prs1core.analysis.episodes import (
    build_snore_episodes,
    link_episodes,
    summarize_links,
    value_episodes_from_minute_bands,
    value_episodes_over_threshold,
)
from prs1core.analysis.flow_limitation import (
    banded_severity,
    ema_series,
    minute_median_series,
    score_breath,
)
from prs1core.analysis.rolling import (
    ahi_event_counts_per_minute,
    heatmap_max,
    rolling_ahi,
    snore_heatmap_counts,
    usage_seconds_per_minute,
)
from prs1core.analysis.time_weighted import (
    fraction_over_from_intervals,
    max_value,
    min_value,
    quantile_from_intervals,
)
from prs1core.analysis.types import TimePoint, WeightedInterval
from prs1core.analysis.weighted_stats import WeightedPoint, WeightedStats, WeightedValueStats
from prs1core.config import ConfigError, Settings
from prs1core.constants import AggregationConstants, FlowLimitationConstants
from prs1core.models.breath import Breath
from prs1core.models.buckets import (
    DailyBucket,
    MetricSummary,
    MonthlyBucket,
    SessionSlice,
    TrendBucket,
    WeeklyBucket,
)
from prs1core.models.events import (
    Event,
    EventType,
    SignalKind,
    SignalSample,
    samples_from_events,
)
from prs1core.models.session import Session

logger = logging.getLogger(__name__)

BREATH_METRICS = {
    "tidal_volume": lambda b: b.tidal_volume_l,
    "resp_rate": lambda b: b.resp_rate_bpm,
    "minute_ventilation": lambda b: b.minute_ventilation_lpm,
    "insp_time": lambda b: b.insp_time_sec,
    "exp_time": lambda b: b.exp_time_sec,
    "ie_ratio": lambda b: b.ie_ratio,
}


def numeric_intervals_within_slices(
    samples: Sequence[SignalSample],
    slices: Sequence[SessionSlice],
    min_segment_seconds: int = AggregationConstants.MIN_SAMPLE_SEGMENT_SECONDS,
) -> list[WeightedInterval[float]]:
    """
    Piecewise-constant intervals clamped to each slice.

    A sample holds until the next sample in the same slice, or the slice
    end. Samples that would hold for less than ``min_segment_seconds`` keep
    a zero-width interval: they still count for min/max but carry no
    weight in quantiles. Non-finite values are dropped.
    """
    if not samples or not slices:
        return []
    ordered = sorted(samples, key=lambda s: s.t_epoch_sec)
    times = [s.t_epoch_sec for s in ordered]

    out = []
    for sl in slices:
        t0, t1 = sl.start_epoch_sec, sl.end_epoch_sec
        if t1 <= t0:
            continue
        lo = bisect.bisect_left(times, t0)
        hi = bisect.bisect_left(times, t1)
        for i in range(lo, hi):
            cur = ordered[i]
            if not math.isfinite(cur.value):
                continue
            seg_end = times[i + 1] if i + 1 < hi else t1
            if seg_end - cur.t_epoch_sec < min_segment_seconds:
                out.append(WeightedInterval(cur.t_epoch_sec, cur.t_epoch_sec, cur.value))
            else:
                out.append(WeightedInterval(cur.t_epoch_sec, seg_end, cur.value))
    return out


def _interval_summary(intervals: Sequence[WeightedInterval[float]]) -> MetricSummary:
    return MetricSummary(
        median=quantile_from_intervals(intervals, 0.5),
        p95=quantile_from_intervals(intervals, 0.95),
        min=min_value(intervals),
        max=max_value(intervals),
    )


def _weighted_summary(values: Sequence[float], weights: Sequence[float]) -> MetricSummary:
    if not values:
        return MetricSummary()
    return MetricSummary(
        median=WeightedValueStats.weighted_median(values, weights),
        p95=WeightedValueStats.weighted_quantile(values, weights, 0.95),
        min=WeightedValueStats.min(values),
        max=WeightedValueStats.max(values),
    )


def _ahi(counts: dict[EventType, int], usage_seconds: int) -> float | None:
    if usage_seconds <= 0:
        return None
    apneas = sum(n for t, n in counts.items() if t.counts_toward_ahi)
    return apneas / (usage_seconds / 3600.0)


def resolve_timezone(name: str) -> ZoneInfo:
    """
    Look up an IANA time zone.

    Raises:
        ConfigError: If the zone is unknown
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"Unknown time zone {name!r}") from e


class _DayState:
    """Mutable accumulator for one day while slices and data are assigned."""

    def __init__(self, day: date, start_sec: int, end_sec: int):
        self.day = day
        self.start_sec = start_sec
        self.end_sec = end_sec
        self.slices: list[SessionSlice] = []
        self.events: list[Event] = []
        self.samples: dict[SignalKind, list[SignalSample]] = defaultdict(list)

    @property
    def minutes(self) -> int:
        return (self.end_sec - self.start_sec) // 60

    @property
    def usage_seconds(self) -> int:
        return sum(sl.duration_seconds for sl in self.slices)


class DailyAggregator:
    """
    Build one bucket per local calendar day covered by the sessions.

    Example:
        >>> days = DailyAggregator(load_settings()).build(sessions)
        >>> days[0].ahi, days[0].pressure.p95
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or Settings()
        self.tz = resolve_timezone(self.settings.aggregation.timezone)
        self._breath_cache: dict[int, list[Breath]] = {}
        self._smoothed_cache: dict[int, np.ndarray] = {}

    def local_date(self, t_epoch_sec: int) -> date:
        return datetime.fromtimestamp(t_epoch_sec, tz=self.tz).date()

    def day_bounds(self, day: date) -> tuple[int, int]:
        """Epoch seconds of local midnight and the following midnight."""
        start = datetime.combine(day, time(), tzinfo=self.tz)
        end = datetime.combine(day + timedelta(days=1), time(), tzinfo=self.tz)
        return int(start.timestamp()), int(end.timestamp())

    def build(self, sessions: Sequence[Session]) -> list[DailyBucket]:
        """
        Aggregate sessions into day buckets.

        Returns:
            Buckets for every day from the first session start to the last
            session end, sorted by day. Days without therapy are included.
        """
        if not sessions:
            return []
        self._breath_cache.clear()
        self._smoothed_cache.clear()

        first = self.local_date(min(s.start_epoch_sec for s in sessions))
        last = self.local_date(
            max(max(s.end_epoch_sec - 1, s.start_epoch_sec) for s in sessions)
        )

        days: dict[date, _DayState] = {}
        cur = first
        while cur <= last:
            days[cur] = _DayState(cur, *self.day_bounds(cur))
            cur += timedelta(days=1)

        for session in sessions:
            own_slices = self._slice_session(session, days)
            self._assign_events(session, own_slices, days)
            self._assign_samples(session, own_slices, days)

        buckets = [self._finish(days[d]) for d in sorted(days)]
        logger.info(
            f"Aggregated {len(sessions)} sessions into {len(buckets)} day buckets"
        )
        return buckets

    def _slice_session(
        self, session: Session, days: dict[date, _DayState]
    ) -> list[tuple[date, SessionSlice]]:
        out = []
        cur = session.start_epoch_sec
        while cur < session.end_epoch_sec:
            day = self.local_date(cur)
            _, next_midnight = self.day_bounds(day)
            seg_end = min(session.end_epoch_sec, next_midnight)
            sl = SessionSlice(session=session, start_epoch_sec=cur, end_epoch_sec=seg_end)
            if day in days:
                days[day].slices.append(sl)
                out.append((day, sl))
            cur = seg_end
        return out

    def _assign_events(
        self,
        session: Session,
        own_slices: list[tuple[date, SessionSlice]],
        days: dict[date, _DayState],
    ) -> None:
        for e in session.events:
            if e.type.is_sample:
                continue
            for day, sl in own_slices:
                if sl.contains(e.t_epoch_sec):
                    days[day].events.append(e)
                    break

    def _assign_samples(
        self,
        session: Session,
        own_slices: list[tuple[date, SessionSlice]],
        days: dict[date, _DayState],
    ) -> None:
        by_kind = samples_from_events(session.events)
        by_kind.update({k: v for k, v in session.samples.items() if v})

        for kind, samples in by_kind.items():
            ordered = sorted(samples, key=lambda s: s.t_epoch_sec)
            times = [s.t_epoch_sec for s in ordered]
            for day, sl in own_slices:
                lo = bisect.bisect_left(times, sl.start_epoch_sec)
                hi = bisect.bisect_left(times, sl.end_epoch_sec)
                days[day].samples[kind].extend(ordered[lo:hi])

    def _breaths_for(self, session: Session) -> list[Breath]:
        key = id(session)
        if key not in self._breath_cache:
            flow = session.waveform(SignalKind.FLOW_RATE)
            if session.breaths:
                breaths = list(session.breaths)
            elif flow is not None and len(flow) > 0:
                breaths = BreathAnalyzer(
                    flow,
                    leak=session.waveform(SignalKind.LEAK),
                    settings=self.settings.breath,
                ).segment()
            else:
                breaths = []
            self._breath_cache[key] = breaths
        return self._breath_cache[key]

    def _smoothed_flow(self, session: Session) -> np.ndarray:
        key = id(session)
        if key not in self._smoothed_cache:
            self._smoothed_cache[key] = smooth3(session.waveforms[SignalKind.FLOW_RATE].samples)
        return self._smoothed_cache[key]

    def _finish(self, state: _DayState) -> DailyBucket:
        cfg = self.settings.aggregation
        episodes_cfg = self.settings.episodes
        day_start, minutes = state.start_sec, state.minutes
        usage = state.usage_seconds
        hours = usage / 3600.0

        state.slices.sort(key=lambda sl: sl.start_epoch_sec)
        state.events.sort(key=lambda e: e.t_epoch_sec)
        counts = dict(Counter(e.type for e in state.events))

        fields: dict = {
            "day": state.day,
            "day_start_sec": day_start,
            "day_end_sec": state.end_sec,
            "slices": state.slices,
            "events": state.events,
            "samples": {k: sorted(v, key=lambda s: s.t_epoch_sec) for k, v in state.samples.items()},
            "usage_seconds": usage,
            "event_counts": counts,
            "ahi": _ahi(counts, usage),
        }

        snore_count = counts.get(EventType.SNORE, 0)
        fields["snore_count"] = snore_count
        fields["snore_per_hour"] = snore_count / hours if hours > 0 else None

        min_seg = cfg.min_sample_segment_seconds
        pressure_iv = numeric_intervals_within_slices(
            state.samples.get(SignalKind.PRESSURE, []), state.slices, min_seg
        )
        leak_iv = numeric_intervals_within_slices(
            state.samples.get(SignalKind.LEAK, []), state.slices, min_seg
        )
        relief_iv = numeric_intervals_within_slices(
            state.samples.get(SignalKind.RELIEF_ACTIVE, []), state.slices, min_seg
        )
        fields["pressure"] = _interval_summary(pressure_iv)
        fields["leak"] = _interval_summary(leak_iv)
        frac_over = fraction_over_from_intervals(leak_iv, cfg.leak_over_threshold)
        fields["leak_percent_over"] = None if frac_over is None else frac_over * 100.0
        fields["relief_duty_cycle"] = fraction_over_from_intervals(relief_iv, 0.5)

        leak_episodes = value_episodes_over_threshold(
            leak_iv,
            threshold=cfg.leak_over_threshold,
            min_duration_sec=episodes_cfg.leak_min_duration_sec,
            gap_tolerance_sec=episodes_cfg.leak_gap_tolerance_sec,
        )
        fields["leak_episodes"] = leak_episodes

        fields.update(self._breath_fields(state, counts, hours))

        snore_episodes = build_snore_episodes(
            state.events, max_gap_sec=episodes_cfg.snore_max_gap_sec
        )
        fields["snore_episodes"] = snore_episodes
        fields["snore_episode_total_seconds"] = sum(e.duration_sec for e in snore_episodes)
        fields["snore_episode_max_peak_per_min"] = max(
            (e.peak_per_min_60s for e in snore_episodes), default=None
        )
        heatmap = snore_heatmap_counts(day_start, minutes, state.events)
        fields["snore_heatmap"] = heatmap
        fields["snore_heatmap_max"] = heatmap_max(heatmap)

        high_fl = value_episodes_from_minute_bands(
            fields["fl_bands_5m"],
            day_start_sec=day_start,
            predicate=lambda band: band >= FlowLimitationConstants.HIGH_BAND,
            min_duration_sec=episodes_cfg.high_fl_min_duration_sec,
        )
        fields["high_fl_episodes"] = high_fl
        links = link_episodes(snore_episodes, leak_episodes, high_fl)
        fields["episode_links"] = links
        fields["episode_summary"] = summarize_links(links)

        fields.update(self._rolling_fields(state))

        return DailyBucket(**fields)

    def _breath_fields(
        self, state: _DayState, counts: dict[EventType, int], hours: float
    ) -> dict:
        metric_values: dict[str, list[float]] = {name: [] for name in BREATH_METRICS}
        weights: list[float] = []
        fl_values: list[float] = []
        fl_weights: list[float] = []
        fl_series: list[TimePoint] = []
        zero_eps = self.settings.breath.zero_eps

        for sl in state.slices:
            flow = sl.session.waveform(SignalKind.FLOW_RATE)
            breaths = self._breaths_for(sl.session)
            if flow is None or not breaths:
                continue
            lo_ms, hi_ms = sl.start_epoch_sec * 1000, sl.end_epoch_sec * 1000
            smoothed = self._smoothed_flow(sl.session)
            for b in breaths:
                if not lo_ms <= b.start_epoch_ms < hi_ms or b.duration_sec <= 0:
                    continue
                for name, value_of in BREATH_METRICS.items():
                    metric_values[name].append(value_of(b))
                weights.append(b.duration_sec)

                score = score_breath(flow, b, zero_eps=zero_eps, smoothed=smoothed)
                if score is None:
                    continue
                fl_series.append(TimePoint(b.start_epoch_ms // 1000, score))
                fl_values.append(score)
                fl_weights.append(b.duration_sec)

        out: dict = {
            name: _weighted_summary(values, weights)
            for name, values in metric_values.items()
        }
        out["breath_count"] = len(weights)

        if fl_values:
            out["flow_limitation"] = _weighted_summary(fl_values, fl_weights)
        else:
            fl_count = counts.get(EventType.FLOW_LIMITATION, 0)
            per_hour = fl_count / hours if hours > 0 else None
            out["flow_limitation"] = MetricSummary(median=per_hour, p95=per_hour)

        fl_series.sort(key=lambda p: p.t_epoch_sec)
        out["fl_breath_series"] = fl_series
        if fl_series:
            minute = minute_median_series(fl_series, state.start_sec, state.minutes)
            ema5 = ema_series(minute, FlowLimitationConstants.EMA_SHORT_MINUTES)
            ema15 = ema_series(minute, FlowLimitationConstants.EMA_LONG_MINUTES)
            out.update(
                fl_minute_median=minute,
                fl_ema_5m=ema5,
                fl_ema_15m=ema15,
                fl_bands_5m=banded_severity(ema5),
                fl_bands_15m=banded_severity(ema15),
            )
        else:
            out.update(
                fl_minute_median=[],
                fl_ema_5m=[],
                fl_ema_15m=[],
                fl_bands_5m=[],
                fl_bands_15m=[],
            )
        return out

    def _rolling_fields(self, state: _DayState) -> dict:
        day_start, minutes = state.start_sec, state.minutes
        usage = usage_seconds_per_minute(
            day_start,
            minutes,
            [(sl.start_epoch_sec, sl.end_epoch_sec) for sl in state.slices],
        )
        counts = ahi_event_counts_per_minute(day_start, minutes, state.events)

        windows = set(self.settings.aggregation.rolling_windows_minutes)
        series = {
            w: rolling_ahi(day_start, minutes, usage, counts, w)
            for w in sorted(windows | {AggregationConstants.PEAK_AHI_WINDOW_MINUTES})
        }
        peak_series = series[AggregationConstants.PEAK_AHI_WINDOW_MINUTES]
        peak = max((p.value for p in peak_series if p.value is not None), default=None)
        return {
            "rolling_ahi": {w: s for w, s in series.items() if w in windows},
            "peak_ahi_30m": peak,
        }


def _usage_weighted_mean(pairs: Iterable[tuple[float | None, int]]) -> float | None:
    return WeightedStats.mean([WeightedPoint(v, w) for v, w in pairs if v is not None])


class TrendAggregator:
    """
    Roll day buckets up into ISO weeks and calendar months.

    AHI is recomputed from summed event counts and usage; the pressure and
    leak figures are usage-weighted means of the daily values.
    """

    @staticmethod
    def week_start(day: date) -> date:
        return day - timedelta(days=day.weekday())

    @staticmethod
    def month_start(day: date) -> date:
        return day.replace(day=1)

    @staticmethod
    def month_end_exclusive(month_start: date) -> date:
        if month_start.month == 12:
            return date(month_start.year + 1, 1, 1)
        return date(month_start.year, month_start.month + 1, 1)

    def build_weekly(self, days: Sequence[DailyBucket]) -> list[WeeklyBucket]:
        groups: dict[date, list[DailyBucket]] = defaultdict(list)
        for d in days:
            groups[self.week_start(d.day)].append(d)
        return [
            self._roll_up(WeeklyBucket, start, start + timedelta(days=7), groups[start])
            for start in sorted(groups)
        ]

    def build_monthly(self, days: Sequence[DailyBucket]) -> list[MonthlyBucket]:
        groups: dict[date, list[DailyBucket]] = defaultdict(list)
        for d in days:
            groups[self.month_start(d.day)].append(d)
        return [
            self._roll_up(MonthlyBucket, start, self.month_end_exclusive(start), groups[start])
            for start in sorted(groups)
        ]

    @staticmethod
    def _roll_up(
        bucket_cls: type[TrendBucket],
        start: date,
        end: date,
        days: list[DailyBucket],
    ) -> TrendBucket:
        days = sorted(days, key=lambda d: d.day)
        usage = sum(d.usage_seconds for d in days)
        counts: Counter[EventType] = Counter()
        for d in days:
            counts.update(d.event_counts)

        return bucket_cls(
            period_start=start,
            period_end_exclusive=end,
            days=[d.day for d in days],
            days_used=sum(1 for d in days if d.usage_seconds > 0),
            usage_seconds=usage,
            event_counts=dict(counts),
            ahi=_ahi(counts, usage),
            snore_count=counts.get(EventType.SNORE, 0),
            pressure_median=_usage_weighted_mean((d.pressure.median, d.usage_seconds) for d in days),
            pressure_p95=_usage_weighted_mean((d.pressure.p95, d.usage_seconds) for d in days),
            leak_median=_usage_weighted_mean((d.leak.median, d.usage_seconds) for d in days),
            leak_p95=_usage_weighted_mean((d.leak.p95, d.usage_seconds) for d in days),
            leak_percent_over=_usage_weighted_mean(
                (d.leak_percent_over, d.usage_seconds) for d in days
            ),
        )
