"""
Unit tests for episode extraction and snore/leak/flow-limitation correlation.
"""

import pytest

from prs1core.analysis.episodes import (
    build_snore_episodes,
    link_episodes,
    summarize_links,
    value_episodes_from_minute_bands,
    value_episodes_over_threshold,
)
from prs1core.analysis.types import ValueEpisode, WeightedInterval
from prs1core.models.events import Event, EventType
from tests.helpers.synthetic_data import NIGHT_START

pytestmark = pytest.mark.business_logic


class TestValueEpisodes:
    def test_gap_tolerance_merges(self):
        intervals = [WeightedInterval(0, 20, 30.0), WeightedInterval(25, 50, 40.0)]

        (episode,) = value_episodes_over_threshold(intervals, 24.0, gap_tolerance_sec=5)

        assert (episode.start_sec, episode.end_sec_exclusive) == (0, 50)
        assert episode.duration_sec == 50
        assert episode.max_value == 40.0
        assert episode.mean_value == pytest.approx((30 * 20 + 40 * 25) / 45)

    def test_gap_beyond_tolerance_splits(self):
        intervals = [WeightedInterval(0, 20, 30.0), WeightedInterval(25, 50, 40.0)]

        episodes = value_episodes_over_threshold(
            intervals, 24.0, min_duration_sec=0, gap_tolerance_sec=4
        )

        assert [(e.start_sec, e.end_sec_exclusive) for e in episodes] == [(0, 20), (25, 50)]

    def test_merge_law_at_tolerance_boundary(self):
        """[0,30) and [35,60) merge with a 5 s tolerance and split with 4 s."""
        intervals = [WeightedInterval(0, 30, 30.0), WeightedInterval(35, 60, 30.0)]

        merged = value_episodes_over_threshold(
            intervals, 24.0, min_duration_sec=0, gap_tolerance_sec=5
        )
        split = value_episodes_over_threshold(
            intervals, 24.0, min_duration_sec=0, gap_tolerance_sec=4
        )

        assert [(e.start_sec, e.end_sec_exclusive) for e in merged] == [(0, 60)]
        assert [(e.start_sec, e.end_sec_exclusive) for e in split] == [(0, 30), (35, 60)]

    def test_low_interval_within_tolerance_keeps_run(self):
        intervals = [
            WeightedInterval(0, 30, 30.0),
            WeightedInterval(30, 35, 10.0),
            WeightedInterval(35, 60, 40.0),
        ]

        (episode,) = value_episodes_over_threshold(
            intervals, 24.0, min_duration_sec=0, gap_tolerance_sec=5
        )

        assert (episode.start_sec, episode.end_sec_exclusive) == (0, 60)
        assert episode.mean_value == pytest.approx((30 * 30 + 40 * 25) / 55)

    def test_low_interval_beyond_tolerance_ends_run(self):
        intervals = [
            WeightedInterval(30, 55, 40.0),
            WeightedInterval(0, 20, 30.0),
            WeightedInterval(20, 30, 10.0),
        ]

        episodes = value_episodes_over_threshold(intervals, 24.0, min_duration_sec=0)

        assert [(e.start_sec, e.end_sec_exclusive) for e in episodes] == [(0, 20), (30, 55)]

    def test_short_runs_dropped(self):
        intervals = [WeightedInterval(0, 20, 30.0)]

        assert value_episodes_over_threshold(intervals, 24.0, min_duration_sec=30) == []

    def test_threshold_is_strict(self):
        intervals = [WeightedInterval(0, 100, 24.0)]

        assert value_episodes_over_threshold(intervals, 24.0) == []


class TestMinuteBandEpisodes:
    BANDS = [2, 2, 0, 2, 2, 2]

    def test_runs(self):
        episodes = value_episodes_from_minute_bands(self.BANDS, 1000, lambda b: b >= 2)

        assert [(e.start_sec, e.end_sec_exclusive) for e in episodes] == [
            (1000, 1120),
            (1180, 1360),
        ]

    def test_gap_tolerance(self):
        episodes = value_episodes_from_minute_bands(
            self.BANDS, 0, lambda b: b >= 2, gap_tolerance_minutes=1
        )

        assert [(e.start_sec, e.end_sec_exclusive) for e in episodes] == [(0, 360)]

    def test_gap_longer_than_tolerance_splits(self):
        episodes = value_episodes_from_minute_bands(
            [2, 0, 0, 2], 0, lambda b: b >= 2, gap_tolerance_minutes=1
        )

        assert [(e.start_sec, e.end_sec_exclusive) for e in episodes] == [(0, 60), (180, 240)]

    def test_min_duration(self):
        episodes = value_episodes_from_minute_bands(
            self.BANDS, 0, lambda b: b >= 2, min_duration_sec=180
        )

        assert [(e.start_sec, e.end_sec_exclusive) for e in episodes] == [(180, 360)]


def _snores(*offsets: int) -> list[Event]:
    return [Event(t_epoch_sec=NIGHT_START + o, type=EventType.SNORE) for o in offsets]


class TestSnoreEpisodes:
    def test_clusters_by_gap(self):
        events = _snores(30, 0, 5, 10) + [
            Event(t_epoch_sec=NIGHT_START + 2, type=EventType.VIBRATORY_SNORE)
        ]

        first, second = build_snore_episodes(events, max_gap_sec=10)

        assert first.start_epoch_ms == NIGHT_START * 1000
        assert first.end_epoch_ms_exclusive == (NIGHT_START + 11) * 1000
        assert first.count == 3
        assert first.duration_sec == 11
        assert first.density_per_min == pytest.approx(3 / (11 / 60))
        assert first.peak_per_min_60s == 3.0

        assert second.count == 1
        assert second.duration_sec == 1
        assert second.density_per_min == pytest.approx(60.0)

    def test_peak_window(self):
        """Peak counts events in the busiest 60 s window."""
        events = _snores(0, 10, 20, 30, 40, 50, 60, 70)

        (episode,) = build_snore_episodes(events)

        assert episode.count == 8
        assert episode.peak_per_min_60s == 6.0

    def test_no_snores(self):
        assert build_snore_episodes([Event(t_epoch_sec=0, type=EventType.HYPOPNEA)]) == []


class TestEpisodeLinks:
    def test_overlap_seconds_and_summary(self):
        snores = build_snore_episodes(_snores(0, 5, 10, 100))
        leak = [ValueEpisode(NIGHT_START + 5, NIGHT_START + 200, 40.0, 30.0)]
        high_fl = [ValueEpisode(NIGHT_START + 60, NIGHT_START + 120, 1.0, 1.0)]

        links = link_episodes(snores, leak, high_fl)

        assert [link.snore_episode_index for link in links] == [0, 1]
        assert links[0].overlap_leak_seconds == 6
        assert links[0].overlap_high_fl_seconds == 0
        assert links[1].has_both
        assert links[0].snore_duration_seconds == 11

        summary = summarize_links(links)
        assert summary.snore_episode_count == 2
        assert summary.with_leak_overlap == 2
        assert summary.with_high_fl_overlap == 1
        assert summary.with_both_overlap == 1
        assert summary.total_leak_overlap_seconds == 7

    def test_no_snore_episodes(self):
        assert link_episodes([], [ValueEpisode(0, 100, 30.0, 30.0)], []) == []
        assert summarize_links([]).snore_episode_count == 0
