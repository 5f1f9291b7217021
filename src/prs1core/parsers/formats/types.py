"""EDF format type definitions."""

from datetime import datetime

import numpy as np

from pydantic import BaseModel, Field


class EDFHeader(BaseModel):
    """EDF file header information."""

    version: str = Field(description="EDF version")
    patient_info: str = Field(description="Patient identification")
    recording_info: str = Field(description="Recording identification")
    start_datetime: datetime = Field(description="Recording start time (aware)")
    header_bytes: int = Field(ge=256, description="Total header size in bytes")
    num_data_records: int = Field(description="Number of data records (-1 = unknown)")
    record_duration: float = Field(description="Record duration (seconds)")
    num_signals: int = Field(ge=0, description="Number of signals")
    is_edf_plus: bool = Field(default=False, description="EDF+ format flag")

    @property
    def start_epoch_sec(self) -> int:
        return int(self.start_datetime.timestamp())

    @property
    def total_seconds(self) -> float | None:
        """Recording length, or None when records or duration are unknown."""
        if self.num_data_records > 0 and self.record_duration > 0:
            return self.num_data_records * self.record_duration
        return None


class EDFSignalInfo(BaseModel):
    """Information about a single EDF signal/channel."""

    label: str = Field(description="Signal name")
    transducer: str = Field(description="Transducer type")
    physical_dimension: str = Field(description="Units (e.g., 'cmH2O', 'L/min')")
    physical_min: float = Field(description="Physical minimum value")
    physical_max: float = Field(description="Physical maximum value")
    digital_min: int = Field(description="Digital minimum value")
    digital_max: int = Field(description="Digital maximum value")
    prefiltering: str = Field(description="Prefiltering info")
    samples_per_record: int = Field(description="Samples per data record")
    signal_index: int = Field(ge=0, description="Signal index in EDF file")

    @property
    def digital_span(self) -> int:
        return self.digital_max - self.digital_min

    def digital_to_physical(self, digital_value: int) -> float:
        """
        Convert a digital value to physical units.

        A zero digital span leaves the value unchanged.
        """
        span = self.digital_span
        if span == 0:
            return float(digital_value)
        return (digital_value - self.digital_min) * (
            self.physical_max - self.physical_min
        ) / span + self.physical_min

    def to_physical(self, digital: np.ndarray) -> np.ndarray:
        """Vectorized :meth:`digital_to_physical` (returns float64)."""
        values = digital.astype(np.float64)
        span = self.digital_span
        if span == 0:
            return values
        return (values - self.digital_min) * (
            (self.physical_max - self.physical_min) / span
        ) + self.physical_min

    def sample_rate_hz(self, record_duration: float) -> float:
        return self.samples_per_record / record_duration
