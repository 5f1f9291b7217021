"""
Unit tests for per-minute usage, rolling AHI, breath roll-ups and the snore heatmap.
"""

import pytest

from prs1core.analysis.rolling import (
    ahi_event_counts_per_minute,
    heatmap_max,
    rolling_ahi,
    rolling_breath_mean,
    rolling_breath_median,
    snore_heatmap_counts,
    usage_seconds_per_minute,
)
from prs1core.models.events import Event, EventType
from tests.helpers.synthetic_data import make_breath

pytestmark = pytest.mark.business_logic


class TestUsagePerMinute:
    def test_partial_minutes(self):
        assert usage_seconds_per_minute(0, 3, [(30, 150)]) == [30, 60, 30]

    def test_overlapping_slices_clamped(self):
        assert usage_seconds_per_minute(0, 2, [(0, 60), (0, 90)]) == [60, 30]

    def test_slices_clipped_to_day(self):
        assert usage_seconds_per_minute(60, 2, [(0, 90), (170, 500)]) == [30, 10]


class TestRollingAHI:
    def test_event_counts_per_minute(self):
        events = [
            Event(t_epoch_sec=10, type=EventType.OBSTRUCTIVE_APNEA),
            Event(t_epoch_sec=70, type=EventType.CLEAR_AIRWAY),
            Event(t_epoch_sec=75, type=EventType.HYPOPNEA),
            Event(t_epoch_sec=80, type=EventType.SNORE),
            Event(t_epoch_sec=500, type=EventType.HYPOPNEA),
        ]

        assert ahi_event_counts_per_minute(0, 3, events) == [1, 2, 0]

    def test_no_usage_is_none(self):
        points = rolling_ahi(0, 3, [0, 0, 60], [0, 0, 1], window_minutes=1)

        assert [p.value for p in points] == [None, None, 60.0]
        assert [p.t_epoch_sec for p in points] == [0, 60, 120]

    def test_trailing_window(self):
        points = rolling_ahi(0, 3, [60, 60, 60], [1, 0, 0], window_minutes=2)

        assert [p.value for p in points] == pytest.approx([60.0, 30.0, 0.0])

    @pytest.mark.parametrize(
        "minutes, usage, counts, window",
        [(0, [], [], 5), (2, [60], [0, 0], 5), (2, [60, 60], [0, 0], 0)],
    )
    def test_inconsistent_inputs(self, minutes, usage, counts, window):
        assert rolling_ahi(0, minutes, usage, counts, window) == []


class TestRollingBreathMetrics:
    @pytest.fixture
    def breaths(self):
        return [
            make_breath(0, insp_sec=1.0, exp_sec=2.0),
            make_breath(4000, insp_sec=2.0, exp_sec=2.0),
            make_breath(120_000, insp_sec=3.0, exp_sec=3.0),
        ]

    def test_median(self, breaths):
        points = rolling_breath_median(0, 3, breaths, 2, lambda b: b.insp_time_sec)

        assert [p.value for p in points] == [1.5, 1.5, 3.0]

    def test_mean(self, breaths):
        points = rolling_breath_mean(0, 4, breaths, 1, lambda b: b.exp_time_sec)

        assert [p.value for p in points] == [2.0, None, 3.0, None]

    def test_none_values_skipped(self, breaths):
        points = rolling_breath_median(0, 1, breaths, 1, lambda b: None)

        assert points[0].value is None


class TestSnoreHeatmap:
    def test_counts(self):
        events = [
            Event(t_epoch_sec=5, type=EventType.VIBRATORY_SNORE, value=3.0),
            Event(t_epoch_sec=10, type=EventType.SNORE),
            Event(t_epoch_sec=70, type=EventType.VIBRATORY_SNORE_2, value=0.0),
            Event(t_epoch_sec=80, type=EventType.OBSTRUCTIVE_APNEA),
            Event(t_epoch_sec=500, type=EventType.SNORE),
        ]

        counts = snore_heatmap_counts(0, 3, events)

        assert counts == [4, 1, 0]
        assert heatmap_max(counts) == 4
        assert heatmap_max([]) == 0
