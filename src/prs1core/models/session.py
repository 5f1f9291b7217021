"""
Session model shared by the loader, waveform index and aggregators.

A session is what one decoded file contributes: a time span plus whatever
events, 1 Hz samples and native-rate waveforms that file carried.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, model_validator

from prs1core.models.breath import Breath
from prs1core.models.events import Event, SignalKind, SignalSample
from prs1core.models.waveform import WaveformChannel


class Session(BaseModel):
    """One decoded therapy session (or session fragment)."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    start_epoch_sec: int = Field(description="Session start (UNIX seconds)")
    end_epoch_sec: int = Field(description="Session end, exclusive (UNIX seconds)")
    events: list[Event] = Field(default_factory=list, description="Decoded events")
    samples: dict[SignalKind, list[SignalSample]] = Field(
        default_factory=dict, description="1 Hz (or event-carried) samples by kind"
    )
    waveforms: dict[SignalKind, WaveformChannel] = Field(
        default_factory=dict, description="Native-rate waveforms by kind"
    )
    breaths: list[Breath] = Field(
        default_factory=list, description="Cached breath segmentation, if computed"
    )
    source_path: str | None = Field(default=None, description="Originating file")
    source_label: str | None = Field(default=None, description="Short source label")
    minutes_used: int | None = Field(default=None, ge=0, description="Usage minutes")

    @model_validator(mode="after")
    def check_span(self) -> "Session":
        if self.end_epoch_sec < self.start_epoch_sec:
            raise ValueError(
                f"Session end {self.end_epoch_sec} precedes start {self.start_epoch_sec}"
            )
        return self

    @property
    def duration_seconds(self) -> int:
        return self.end_epoch_sec - self.start_epoch_sec

    @property
    def start(self) -> datetime:
        return datetime.fromtimestamp(self.start_epoch_sec, tz=timezone.utc)

    @property
    def end(self) -> datetime:
        return datetime.fromtimestamp(self.end_epoch_sec, tz=timezone.utc)

    def samples_of(self, kind: SignalKind) -> list[SignalSample]:
        return self.samples.get(kind, [])

    def waveform(self, kind: SignalKind) -> WaveformChannel | None:
        return self.waveforms.get(kind)
