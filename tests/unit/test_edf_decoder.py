"""
Unit tests for the EDF decoder.

Files are built in memory with tests.helpers.synthetic_data.build_edf.
"""

from datetime import datetime, timezone

import numpy as np
import pytest

from prs1core.config import EDFSettings
from prs1core.models.events import SecondBinAccumulator, SignalKind
from prs1core.parsers.edf import EDFDecoder
from prs1core.parsers.formats.types import EDFSignalInfo
from tests.helpers.synthetic_data import NIGHT_START, EDFSignalSpec, build_edf, sample_edf

pytestmark = pytest.mark.parser


def _signal_info(**overrides) -> EDFSignalInfo:
    fields = dict(
        label="Flow",
        transducer="",
        physical_dimension="L/min",
        physical_min=0.0,
        physical_max=50.0,
        digital_min=0,
        digital_max=100,
        prefiltering="",
        samples_per_record=25,
        signal_index=0,
    )
    fields.update(overrides)
    return EDFSignalInfo(**fields)


class TestSignalConversion:
    def test_linear_mapping_midpoint(self):
        assert _signal_info().digital_to_physical(50) == pytest.approx(25.0)

    def test_endpoints(self):
        info = _signal_info(physical_min=-100.0, physical_max=100.0, digital_min=-1000, digital_max=1000)

        assert info.digital_to_physical(-1000) == pytest.approx(-100.0)
        assert info.digital_to_physical(1000) == pytest.approx(100.0)

    def test_zero_span_passes_value_through(self):
        info = _signal_info(digital_min=5, digital_max=5)

        assert info.digital_to_physical(7) == 7.0
        assert info.to_physical(np.array([7, 8], dtype=np.int16)).tolist() == [7.0, 8.0]

    def test_vectorized_matches_scalar(self):
        info = _signal_info()
        digital = np.array([0, 25, 100], dtype=np.int16)

        assert info.to_physical(digital).tolist() == pytest.approx(
            [info.digital_to_physical(int(d)) for d in digital]
        )


class TestSecondBinAccumulator:
    def test_averages_per_second(self):
        acc = SecondBinAccumulator(SignalKind.PRESSURE)
        acc.add(100, 9.0)
        acc.add(100, 11.0)
        acc.add(101, 12.0)

        assert [(s.t_epoch_sec, s.value) for s in acc.flush()] == [(100, 10.0), (101, 12.0)]

    def test_add_many_matches_add(self):
        secs = np.array([5, 5, 5, 6, 7, 7])
        values = np.array([1.0, 2.0, 3.0, 4.0, 5.0, 7.0])
        batch = SecondBinAccumulator(SignalKind.LEAK)
        batch.add_many(secs, values)
        single = SecondBinAccumulator(SignalKind.LEAK)
        for sec, value in zip(secs, values):
            single.add(int(sec), float(value))

        assert batch.flush() == single.flush()

    def test_boolean_majority(self):
        acc = SecondBinAccumulator(SignalKind.RELIEF_ACTIVE, is_boolean=True)
        acc.add_many(np.array([0, 0, 0, 1, 1]), np.array([0.9, 0.0, 1.0, 0.2, 0.1]))

        assert [s.value for s in acc.flush()] == [1.0, 0.0]

    def test_flush_resets(self):
        acc = SecondBinAccumulator(SignalKind.PRESSURE)
        acc.add(1, 1.0)
        acc.flush()

        assert acc.flush() == []


class TestEDFDecoder:
    def test_decodes_sample_file(self):
        result = EDFDecoder().decode(sample_edf(num_records=10))

        assert result is not None
        assert result.start_epoch_sec == NIGHT_START
        assert result.end_epoch_sec == NIGHT_START + 10
        assert result.records_decoded == 10
        assert not result.truncated

        flow = result.waveforms[SignalKind.FLOW_RATE]
        assert flow.sample_rate_hz == 25.0
        assert len(flow) == 250
        assert flow.start_epoch_ms == NIGHT_START * 1000
        assert flow.samples.dtype == np.float32
        assert flow.samples[25] == pytest.approx(30.0)
        assert flow.unit == "L/min"

        pressure = result.samples[SignalKind.PRESSURE]
        assert [s.t_epoch_sec for s in pressure] == list(range(NIGHT_START, NIGHT_START + 10))
        assert all(s.value == pytest.approx(10.0) for s in pressure)
        assert len(result.samples[SignalKind.FLOW_RATE]) == 10

    def test_truncated_data_area(self):
        spec = EDFSignalSpec("Pressure", 1, [10] * 5)
        data = build_edf([spec], num_records=5, declared_records=10)

        result = EDFDecoder().decode(data)

        assert result.truncated
        assert result.records_decoded == 5
        assert len(result.waveforms[SignalKind.PRESSURE]) == 5

    def test_header_only_file(self):
        spec = EDFSignalSpec("Pressure", 1, [])
        data = build_edf([spec], num_records=0, declared_records=4)

        result = EDFDecoder().decode(data)

        assert result is not None
        assert result.truncated
        assert result.waveforms == {}

    @pytest.mark.parametrize(
        "field, expected",
        [
            (slice(236, 244), {"num_data_records": -1}),
            (slice(244, 252), {"record_duration": 0.0}),
        ],
    )
    def test_blank_count_fields_give_header_only_result(self, field, expected):
        data = bytearray(sample_edf(num_records=4))
        data[field] = b" " * (field.stop - field.start)

        result = EDFDecoder().decode(bytes(data))

        assert result is not None
        for name, value in expected.items():
            assert getattr(result.header, name) == value
        assert result.start_epoch_sec == NIGHT_START
        assert result.minutes_used is None
        assert result.waveforms == {}

    def test_garbled_signal_count_gives_no_signals(self):
        data = bytearray(sample_edf(num_records=4))
        data[252:256] = b"ab  "

        result = EDFDecoder().decode(bytes(data))

        assert result.header.num_signals == 0
        assert result.signals == []

    @pytest.mark.parametrize(
        "yy, year", [("85", 1985), ("99", 1999), ("84", 2084), ("24", 2024)]
    )
    def test_two_digit_year_pivot(self, yy, year):
        data = build_edf([EDFSignalSpec("Leak", 1, [0])], num_records=1, start_date=f"01.02.{yy}")

        result = EDFDecoder().decode(data)

        assert result.header.start_datetime.year == year

    def test_header_time_zone(self):
        data = build_edf([EDFSignalSpec("Leak", 1, [0])], num_records=1)

        result = EDFDecoder(tz="America/New_York").decode(data)

        assert result.start_epoch_sec == NIGHT_START + 5 * 3600

    def test_edf_plus_flag(self):
        data = build_edf([EDFSignalSpec("Leak", 1, [0])], num_records=1, reserved="EDF+C")

        assert EDFDecoder().decode(data).header.is_edf_plus

    @pytest.mark.parametrize(
        "data",
        [
            b"",
            b"not an edf file",
            build_edf([EDFSignalSpec("Leak", 1, [0])], num_records=1, start_date="xx.yy.zz"),
        ],
    )
    def test_unparseable_returns_none(self, data):
        assert EDFDecoder().decode(data) is None

    def test_first_channel_of_kind_wins(self):
        data = build_edf(
            [
                EDFSignalSpec("Flow.40ms", 2, [100, 100]),
                EDFSignalSpec("FlowB", 2, [500, 500]),
            ],
            num_records=1,
        )

        result = EDFDecoder().decode(data)

        assert result.waveforms[SignalKind.FLOW_RATE].label == "Flow.40ms"
        assert result.waveforms[SignalKind.FLOW_RATE].samples[0] == pytest.approx(10.0)

    def test_relief_channel_is_boolean(self):
        spec = EDFSignalSpec(
            "FlexActive",
            2,
            [0, 0, 0, 1000, 1000, 1000],
            physical_min=0.0,
            physical_max=1.0,
            digital_min=0,
            digital_max=1000,
        )

        result = EDFDecoder().decode(build_edf([spec], num_records=3))

        assert [s.value for s in result.samples[SignalKind.RELIEF_ACTIVE]] == [0.0, 1.0, 1.0]

    def test_unrecognised_channels_ignored(self):
        data = build_edf([EDFSignalSpec("SpO2", 1, [95])], num_records=1)

        result = EDFDecoder().decode(data)

        assert result.waveforms == {}
        assert [s.label for s in result.signals] == ["SpO2"]


class TestChannelClassification:
    @pytest.mark.parametrize(
        "label, kind",
        [
            ("Flow.40ms", SignalKind.FLOW_RATE),
            ("MaskPress.2s", SignalKind.PRESSURE),
            ("Leak.2s", SignalKind.LEAK),
            ("EPR.2s", SignalKind.RELIEF_ACTIVE),
            ("Exhale Relief", SignalKind.RELIEF_ACTIVE),
            ("SpO2", None),
        ],
    )
    def test_default_keywords(self, label, kind):
        assert EDFDecoder().classify(label) is kind

    def test_custom_keywords(self):
        decoder = EDFDecoder(EDFSettings(pressure_keywords=["mask"]))

        assert decoder.classify("Mask Pressure") is SignalKind.PRESSURE
        assert decoder.classify("Pressure") is None

    def test_start_datetime_is_aware(self):
        result = EDFDecoder().decode(sample_edf(num_records=1))

        assert result.header.start_datetime == datetime(2024, 2, 1, 22, 0, tzinfo=timezone.utc)
