"""Native-rate waveform channel model."""

import math

from typing import Any

import numpy as np

from pydantic import BaseModel, ConfigDict, Field, field_validator


class WaveformChannel(BaseModel):
    """
    A contiguous native-rate waveform segment.

    Samples are stored as a read-only float32 numpy array; a typical 8-hour
    flow channel at 25 Hz is 720,000 samples, about 2.7 MB.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    start_epoch_ms: int = Field(description="Epoch ms of sample 0")
    sample_rate_hz: float = Field(gt=0, description="Sample rate (Hz)")
    samples: np.ndarray = Field(description="Physical values (float32)")
    unit: str = Field(default="", description="Physical unit (e.g. 'L/min')")
    label: str = Field(default="", description="Source channel label")

    @field_validator("samples", mode="before")
    @classmethod
    def to_float32(cls, v: Any) -> np.ndarray:
        """Store samples as a read-only float32 view."""
        arr = np.asarray(v, dtype=np.float32).reshape(-1).view()
        arr.flags.writeable = False
        return arr

    def __len__(self) -> int:
        return int(self.samples.shape[0])

    @property
    def length(self) -> int:
        return len(self)

    @property
    def duration_ms(self) -> int:
        return self.end_epoch_ms_exclusive - self.start_epoch_ms

    @property
    def end_epoch_ms_exclusive(self) -> int:
        return self.epoch_ms_at(len(self))

    def epoch_ms_at(self, index: int) -> int:
        """Epoch ms of sample ``index`` (rounded to the nearest ms)."""
        return self.start_epoch_ms + round(index * 1000.0 / self.sample_rate_hz)

    def index_at(self, epoch_ms: int) -> int:
        """Sample index covering ``epoch_ms``, clamped to the valid range."""
        n = len(self)
        if n == 0:
            return 0
        idx = math.floor((epoch_ms - self.start_epoch_ms) / 1000.0 * self.sample_rate_hz)
        return min(max(idx, 0), n - 1)

    def nearest_index(self, epoch_ms: int) -> int:
        """Rounded (not floored) sample index, clamped to the valid range."""
        n = len(self)
        if n == 0:
            return 0
        idx = round((epoch_ms - self.start_epoch_ms) * self.sample_rate_hz / 1000.0)
        return min(max(idx, 0), n - 1)

    def with_start(self, start_epoch_ms: int) -> "WaveformChannel":
        """Copy with a new start time and the same samples."""
        return self.model_copy(update={"start_epoch_ms": start_epoch_ms})

    def drop_prefix(self, count: int, start_epoch_ms: int) -> "WaveformChannel":
        """Copy without the first ``count`` samples, starting at ``start_epoch_ms``."""
        return WaveformChannel(
            start_epoch_ms=start_epoch_ms,
            sample_rate_hz=self.sample_rate_hz,
            samples=self.samples[count:],
            unit=self.unit,
            label=self.label,
        )
