"""Per-breath metrics derived from the flow waveform."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Breath:
    """
    One inspiration-expiration cycle.

    Attributes:
        start_epoch_ms: Inspiration start
        insp_end_epoch_ms: Inspiration end (flow turns negative)
        end_epoch_ms: Start of the next inspiration
        tidal_volume_l: Inspired volume (L)
        resp_rate_bpm: 60 / breath duration (breaths/min)
        minute_ventilation_lpm: tidal volume x respiratory rate (L/min)
        insp_time_sec: Inspiratory time (s)
        exp_time_sec: Expiratory time (s)
        ie_ratio: insp_time / exp_time
    """

    start_epoch_ms: int
    insp_end_epoch_ms: int
    end_epoch_ms: int
    tidal_volume_l: float
    resp_rate_bpm: float
    minute_ventilation_lpm: float
    insp_time_sec: float
    exp_time_sec: float
    ie_ratio: float

    @property
    def duration_sec(self) -> float:
        return self.insp_time_sec + self.exp_time_sec
