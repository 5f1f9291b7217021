"""Data models produced by the decoders and consumed by the analytics."""

from prs1core.models.breath import Breath
from prs1core.models.buckets import (
    DailyBucket,
    MetricSummary,
    MonthlyBucket,
    SessionSlice,
    TrendBucket,
    WeeklyBucket,
)
from prs1core.models.events import Event, EventType, SignalKind, SignalSample
from prs1core.models.session import Session
from prs1core.models.waveform import WaveformChannel

__all__ = [
    "Breath",
    "DailyBucket",
    "Event",
    "EventType",
    "MetricSummary",
    "MonthlyBucket",
    "Session",
    "SessionSlice",
    "SignalKind",
    "SignalSample",
    "TrendBucket",
    "WaveformChannel",
    "WeeklyBucket",
]
