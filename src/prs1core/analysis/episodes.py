"""
Episode extraction and cross-episode correlation.

Episodes are runs of qualifying time merged across short gaps:

- value episodes from numeric intervals above a threshold (e.g. leak)
- value episodes from per-minute severity bands (e.g. high flow limitation)
- snore episodes from clustered snore events

Correlation measures how much each snore episode overlaps leak and high
flow-limitation episodes.
"""

import logging

from collections.abc import Callable, Sequence

from prs1core.analysis.types import (
    EpisodeCorrelationSummary,
    EpisodeLink,
    SnoreEpisode,
    ValueEpisode,
    WeightedInterval,
)
from prs1core.constants import EpisodeConstants
from prs1core.models.events import Event, EventType

logger = logging.getLogger(__name__)


def value_episodes_over_threshold(
    intervals: Sequence[WeightedInterval[float]],
    threshold: float,
    min_duration_sec: int = EpisodeConstants.LEAK_MIN_DURATION_SEC,
    gap_tolerance_sec: int = EpisodeConstants.LEAK_GAP_TOLERANCE_SEC,
) -> list[ValueEpisode]:
    """
    Merge intervals with value above ``threshold`` into episodes.

    A qualifying interval joins the current run when it starts no later than
    ``run_end + gap_tolerance_sec``. Non-qualifying intervals inside that
    tolerance leave the run open; one reaching past it ends the run.
    Runs shorter than ``min_duration_sec`` or with no qualifying time are
    dropped.
    """
    episodes: list[ValueEpisode] = []
    run_start: int | None = None
    run_end = 0
    max_v = float("-inf")
    weighted_sum = 0.0
    weighted_secs = 0

    def flush() -> None:
        nonlocal run_start, max_v, weighted_sum, weighted_secs
        if run_start is not None and run_end - run_start >= min_duration_sec and weighted_secs > 0:
            episodes.append(
                ValueEpisode(
                    start_sec=run_start,
                    end_sec_exclusive=run_end,
                    max_value=max_v if max_v != float("-inf") else threshold,
                    mean_value=weighted_sum / weighted_secs,
                )
            )
        run_start = None
        max_v = float("-inf")
        weighted_sum = 0.0
        weighted_secs = 0

    for it in sorted(intervals, key=lambda it: it.t0):
        if not it.value > threshold:
            if run_start is not None and it.t1 > run_end + gap_tolerance_sec:
                flush()
            continue

        if run_start is None:
            run_start, run_end = it.t0, it.t1
        elif it.t0 <= run_end + gap_tolerance_sec:
            run_end = max(run_end, it.t1)
        else:
            flush()
            run_start, run_end = it.t0, it.t1

        max_v = max(max_v, it.value)
        if it.seconds > 0:
            weighted_sum += it.value * it.seconds
            weighted_secs += it.seconds

    flush()
    return episodes


def value_episodes_from_minute_bands(
    bands: Sequence[int],
    day_start_sec: int,
    predicate: Callable[[int], bool],
    min_duration_sec: int = EpisodeConstants.MINUTE_BAND_MIN_DURATION_SEC,
    gap_tolerance_minutes: int = 0,
) -> list[ValueEpisode]:
    """
    Episodes from a per-minute band array (index 0 = ``day_start_sec``).

    Minutes where ``predicate(band)`` holds are merged into runs; a minute
    joins the current run when ``minute - run_end <= gap_tolerance_minutes``,
    so up to that many non-qualifying minutes can sit inside one episode.
    """
    episodes: list[ValueEpisode] = []
    run_start: int | None = None
    run_end = 0

    def flush() -> None:
        nonlocal run_start
        if run_start is not None:
            start_sec = day_start_sec + run_start * 60
            end_sec = day_start_sec + run_end * 60
            if end_sec - start_sec >= min_duration_sec:
                episodes.append(ValueEpisode(start_sec, end_sec, 1.0, 1.0))
        run_start = None

    for i, band in enumerate(bands):
        if not predicate(band):
            if run_start is not None and i + 1 - run_end > gap_tolerance_minutes:
                flush()
            continue
        if run_start is None:
            run_start, run_end = i, i + 1
        elif i - run_end <= gap_tolerance_minutes:
            run_end = i + 1
        else:
            flush()
            run_start, run_end = i, i + 1

    flush()
    return episodes


def _peak_count_in_window(times_ms: Sequence[int], window_ms: int) -> int:
    """Largest number of events in any window starting at an event."""
    best = 0
    j = 0
    for i, t0 in enumerate(times_ms):
        while j < len(times_ms) and times_ms[j] < t0 + window_ms:
            j += 1
        best = max(best, j - i)
    return best


def build_snore_episodes(
    events: Sequence[Event],
    max_gap_sec: int = EpisodeConstants.SNORE_MAX_GAP_SEC,
) -> list[SnoreEpisode]:
    """
    Cluster snore events into episodes.

    Consecutive events no more than ``max_gap_sec`` apart share an episode.
    An episode ends one second after its last event.
    """
    times = sorted(e.epoch_ms for e in events if e.type is EventType.SNORE)
    if not times:
        return []

    gap_ms = max_gap_sec * 1000
    clusters: list[list[int]] = [[times[0]]]
    for t in times[1:]:
        if t - clusters[-1][-1] <= gap_ms:
            clusters[-1].append(t)
        else:
            clusters.append([t])

    episodes = []
    for cluster in clusters:
        start_ms = cluster[0]
        end_ms = cluster[-1] + EpisodeConstants.SNORE_TAIL_MS
        duration_sec = max(1, round((end_ms - start_ms) / 1000))
        episodes.append(
            SnoreEpisode(
                start_epoch_ms=start_ms,
                end_epoch_ms_exclusive=end_ms,
                count=len(cluster),
                duration_sec=duration_sec,
                density_per_min=len(cluster) / (duration_sec / 60.0),
                peak_per_min_60s=float(
                    _peak_count_in_window(cluster, EpisodeConstants.PEAK_WINDOW_MS)
                ),
            )
        )
    return episodes


def _overlap_seconds(start_ms: int, end_ms: int, episode: ValueEpisode) -> int:
    lo = max(start_ms, episode.start_sec * 1000)
    hi = min(end_ms, episode.end_sec_exclusive * 1000)
    return max(0, hi - lo) // 1000


def link_episodes(
    snore_episodes: Sequence[SnoreEpisode],
    leak_episodes: Sequence[ValueEpisode],
    high_fl_episodes: Sequence[ValueEpisode],
) -> list[EpisodeLink]:
    """One link per snore episode with its total leak and high-FL overlap."""
    links = []
    for i, ep in enumerate(snore_episodes):
        s, e = ep.start_epoch_ms, ep.end_epoch_ms_exclusive
        leak_overlap = sum(
            _overlap_seconds(s, e, le) for le in leak_episodes if le.overlaps_ms(s, e)
        )
        fl_overlap = sum(
            _overlap_seconds(s, e, fe) for fe in high_fl_episodes if fe.overlaps_ms(s, e)
        )
        links.append(EpisodeLink(i, s, e, leak_overlap, fl_overlap))
    return links


def summarize_links(links: Sequence[EpisodeLink]) -> EpisodeCorrelationSummary:
    return EpisodeCorrelationSummary(
        snore_episode_count=len(links),
        with_leak_overlap=sum(1 for link in links if link.has_leak_overlap),
        with_high_fl_overlap=sum(1 for link in links if link.has_high_fl_overlap),
        with_both_overlap=sum(1 for link in links if link.has_both),
        total_leak_overlap_seconds=sum(link.overlap_leak_seconds for link in links),
        total_high_fl_overlap_seconds=sum(link.overlap_high_fl_seconds for link in links),
    )
