"""
Unit tests for min/max envelopes and day viewports.
"""

import math

from datetime import date

import numpy as np
import pytest

from prs1core.analysis.types import SnoreEpisode, TimePoint, ValueEpisode
from prs1core.models.buckets import DailyBucket
from prs1core.models.events import Event, EventType, SignalKind
from prs1core.models.waveform import WaveformChannel
from prs1core.waveform.index import WaveformIndex
from prs1core.waveform.viewport import query_envelope, viewport_for_day
from tests.helpers.synthetic_data import NIGHT_START, constant_channel

DAY_START = NIGHT_START - 22 * 3600


def _ramp_index(*starts_ms: int) -> WaveformIndex:
    channels = [
        (
            SignalKind.FLOW_RATE,
            WaveformChannel(start_epoch_ms=start, sample_rate_hz=10.0, samples=np.arange(100)),
        )
        for start in starts_ms
    ]
    return WaveformIndex.from_channels(channels, max_gap_ms_snap=0)


class TestQueryEnvelope:
    def test_bucket_min_max(self):
        points = query_envelope(_ramp_index(0), SignalKind.FLOW_RATE, 0, 10_000, max_buckets=10)

        assert len(points) == 10
        assert points[0].t_epoch_ms == 500
        assert (points[0].min, points[0].max) == (0.0, 10.0)
        assert (points[-1].min, points[-1].max) == (90.0, 99.0)

    @pytest.mark.parametrize("max_buckets", [1, 3, 7, 64])
    def test_never_exceeds_max_buckets_and_keeps_extremes(self, max_buckets):
        points = query_envelope(
            _ramp_index(0), SignalKind.FLOW_RATE, 0, 10_000, max_buckets=max_buckets
        )

        assert 0 < len(points) <= max_buckets
        assert min(p.min for p in points) == 0.0
        assert max(p.max for p in points) == 99.0

    def test_gap_between_segments(self):
        points = query_envelope(
            _ramp_index(0, 20_000), SignalKind.FLOW_RATE, 0, 30_000, max_buckets=3
        )

        assert [p.is_gap for p in points] == [False, True, False]
        assert math.isnan(points[1].min)

    def test_empty_track_yields_gap_points(self):
        points = query_envelope(_ramp_index(0), SignalKind.LEAK, 0, 10_000, max_buckets=4)

        assert len(points) == 4
        assert all(p.is_gap for p in points)

    @pytest.mark.parametrize("start, end, max_buckets", [(10, 10, 5), (20, 10, 5), (0, 10, 0)])
    def test_empty_window(self, start, end, max_buckets):
        assert query_envelope(_ramp_index(0), SignalKind.FLOW_RATE, start, end, max_buckets) == []

    def test_narrow_buckets_see_two_samples(self):
        """Buckets narrower than a sample period still span two samples."""
        points = query_envelope(_ramp_index(0), SignalKind.FLOW_RATE, 0, 1000, max_buckets=100)

        assert all(p.max - p.min == 1.0 for p in points)


@pytest.fixture
def bucket():
    minutes = 24 * 60
    heatmap = [0] * minutes
    heatmap[1320] = 2
    return DailyBucket(
        day=date(2024, 2, 1),
        day_start_sec=DAY_START,
        day_end_sec=DAY_START + 86400,
        events=[
            Event(t_epoch_sec=NIGHT_START + 600, type=EventType.OBSTRUCTIVE_APNEA),
            Event(t_epoch_sec=NIGHT_START + 1800, type=EventType.HYPOPNEA),
        ],
        fl_minute_median=[TimePoint(DAY_START + i * 60, None) for i in range(minutes)],
        fl_bands_5m=[-1] * minutes,
        fl_breath_series=[TimePoint(NIGHT_START + 5, 0.2), TimePoint(NIGHT_START + 4000, 0.1)],
        snore_heatmap=heatmap,
        snore_episodes=[
            SnoreEpisode((NIGHT_START + 60) * 1000, (NIGHT_START + 90) * 1000, 3, 30, 6.0, 3.0),
            SnoreEpisode((NIGHT_START + 7200) * 1000, (NIGHT_START + 7230) * 1000, 3, 30, 6.0, 3.0),
        ],
        leak_episodes=[ValueEpisode(NIGHT_START - 60, NIGHT_START + 60, 40.0, 35.0)],
    )


class TestViewportForDay:
    def test_slices_day_to_window(self, bucket):
        index = WaveformIndex.from_channels(
            [
                (
                    SignalKind.FLOW_RATE,
                    constant_channel(5.0, 25 * 3600, start_epoch_ms=NIGHT_START * 1000),
                )
            ]
        )
        start_ms = NIGHT_START * 1000
        end_ms = (NIGHT_START + 1800) * 1000

        result = viewport_for_day(
            index, bucket, start_ms, end_ms, max_buckets=30, kinds=[SignalKind.FLOW_RATE]
        )

        assert list(result.envelopes) == [SignalKind.FLOW_RATE]
        assert len(result.envelopes[SignalKind.FLOW_RATE]) == 30
        assert result.envelopes[SignalKind.FLOW_RATE][0].max == 5.0
        assert [e.type for e in result.events] == [EventType.OBSTRUCTIVE_APNEA]
        assert len(result.fl_minute_median) == 30
        assert len(result.fl_bands_5m) == 30
        assert result.fl_breath_points == [TimePoint(NIGHT_START + 5, 0.2)]
        assert result.snore_heatmap[0] == TimePoint(NIGHT_START, 2.0)
        assert len(result.snore_heatmap) == 30
        assert len(result.snore_episodes) == 1
        assert len(result.leak_episodes) == 1

    def test_empty_window(self, bucket):
        result = viewport_for_day(WaveformIndex.build([]), bucket, 100, 100)

        assert result.envelopes == {}
        assert result.events == []
