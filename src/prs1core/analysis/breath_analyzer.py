"""
Breath segmentation from the flow waveform.

Segmentation is zero-crossing based on a baseline-corrected, lightly
smoothed flow signal:

- inspiration starts where flow turns positive
- inspiration ends where flow turns negative
- a breath runs from one inspiration start to the next

A noise deadband around zero suppresses spurious crossings; it widens
where an optional leak channel shows high leak. Breaths outside the
configured length bounds, or spent mostly under high leak, are rejected.
"""

import logging

from collections.abc import Iterator

import numpy as np

from scipy.ndimage import uniform_filter1d

from prs1core.config import BreathSettings
from prs1core.constants import BreathAnalysisConstants
from prs1core.models.breath import Breath
from prs1core.models.waveform import WaveformChannel

logger = logging.getLogger(__name__)


def smooth3(samples: np.ndarray) -> np.ndarray:
    """3-sample moving average with the edge samples repeated."""
    return uniform_filter1d(np.asarray(samples, dtype=np.float64), size=3, mode="nearest")


class BreathAnalyzer:
    """
    Segment a flow waveform (L/min) into breaths.

    The analyzer holds no random state: the baseline is estimated from a
    fixed-stride subsample, so repeated runs give identical breaths.

    Example:
        >>> analyzer = BreathAnalyzer(flow, leak=leak)
        >>> breaths = analyzer.segment()
    """

    def __init__(
        self,
        flow: WaveformChannel,
        leak: WaveformChannel | None = None,
        settings: BreathSettings | None = None,
    ):
        self.flow = flow
        self.leak = leak if leak is not None and len(leak) > 0 else None
        self.settings = settings or BreathSettings()

    def estimate_baseline(self, samples: np.ndarray) -> tuple[float, float]:
        """
        Estimate the DC baseline and the adaptive zero deadband.

        Returns:
            (baseline, deadband) where the deadband is
            ``max(zero_eps, 0.05, 1.5 * p10(|x - baseline|))``
        """
        stride = max(1, len(samples) // BreathAnalysisConstants.BASELINE_SUBSAMPLE_TARGET)
        subsample = samples[::stride]
        baseline = float(np.percentile(subsample, 50.0))
        noise_p10 = float(
            np.percentile(np.abs(subsample - baseline), BreathAnalysisConstants.NOISE_PERCENTILE)
        )
        deadband = max(
            self.settings.zero_eps,
            BreathAnalysisConstants.MIN_DEADBAND,
            noise_p10 * BreathAnalysisConstants.NOISE_SCALE,
        )
        return baseline, deadband

    def leak_at_flow_indices(self) -> np.ndarray | None:
        """Leak value (L/min) at every flow sample, by nearest leak sample."""
        if self.leak is None:
            return None
        leak = self.leak
        leak_samples = np.asarray(leak.samples, dtype=np.float64)
        idx = np.arange(len(self.flow), dtype=np.float64)
        flow_ms = self.flow.start_epoch_ms + np.round(idx * 1000.0 / self.flow.sample_rate_hz)
        rel_ms = flow_ms - leak.start_epoch_ms
        leak_idx = np.clip(
            np.round(rel_ms * leak.sample_rate_hz / 1000.0), 0, len(leak) - 1
        ).astype(np.int64)
        values = leak_samples[leak_idx]
        return np.where(rel_ms < 0, leak_samples[0], values)

    def preprocess(self) -> tuple[np.ndarray, float]:
        """
        Baseline-corrected, smoothed, deadband-filtered flow.

        Returns:
            (smoothed, deadband); samples inside their deadband are 0.0
        """
        samples = np.asarray(self.flow.samples, dtype=np.float64)
        baseline, deadband = self.estimate_baseline(samples)
        centered = smooth3(samples) - baseline

        eps = np.full(len(samples), deadband)
        leak_values = self.leak_at_flow_indices()
        if leak_values is not None:
            thr = self.settings.leak_over_threshold
            scale = np.clip(
                1.0 + (leak_values - thr) * BreathAnalysisConstants.LEAK_DEADBAND_SLOPE,
                1.0,
                BreathAnalysisConstants.LEAK_DEADBAND_MAX_SCALE,
            )
            eps = np.where(leak_values > thr, eps * scale, eps)

        smoothed = np.where(np.abs(centered) < eps, 0.0, centered)
        return smoothed, deadband

    @staticmethod
    def find_crossings(smoothed: np.ndarray, deadband: float) -> tuple[np.ndarray, np.ndarray]:
        """Indices of inspiration starts (upcrossings) and ends (downcrossings)."""
        pos = smoothed > deadband
        neg = smoothed < -deadband
        starts = np.flatnonzero(~pos[:-1] & pos[1:]) + 1
        ends = np.flatnonzero(~neg[:-1] & neg[1:]) + 1
        return starts, ends

    def _mostly_leaking(self, start_idx: int, end_idx: int) -> bool:
        leak = self.leak
        if leak is None:
            return False
        rel_start = self.flow.epoch_ms_at(start_idx) - leak.start_epoch_ms
        rel_end = self.flow.epoch_ms_at(end_idx) - leak.start_epoch_ms
        if rel_end <= 0:
            return False
        last = len(leak) - 1
        a = min(max(int(np.floor(rel_start * leak.sample_rate_hz / 1000.0)), 0), last)
        b = min(max(int(np.ceil(rel_end * leak.sample_rate_hz / 1000.0)), 0), last)
        if b <= a:
            return False
        window = leak.samples[a : b + 1]
        over = int(np.count_nonzero(window > self.settings.leak_over_threshold))
        return over / (b - a + 1) >= self.settings.leak_reject_fraction

    def analyze(self) -> Iterator[Breath]:
        """Yield accepted breaths in time order."""
        flow = self.flow
        if len(flow) < 3:
            return

        dt = 1.0 / flow.sample_rate_hz
        settings = self.settings
        smoothed, deadband = self.preprocess()
        starts, ends = self.find_crossings(smoothed, deadband)
        if len(starts) < 2:
            return

        positive_flow = np.maximum(smoothed * settings.flow_gain, 0.0)
        end_ptr = 0
        for s_idx, next_s_idx in zip(starts[:-1].tolist(), starts[1:].tolist()):
            while end_ptr < len(ends) and ends[end_ptr] <= s_idx:
                end_ptr += 1
            if end_ptr >= len(ends):
                break

            e_idx = int(ends[end_ptr])
            if e_idx >= next_s_idx:
                continue

            breath_dur = (next_s_idx - s_idx) * dt
            if not settings.min_breath_sec <= breath_dur <= settings.max_breath_sec:
                continue
            insp_dur = (e_idx - s_idx) * dt
            if insp_dur < settings.min_insp_sec:
                continue
            exp_dur = max(0.0, breath_dur - insp_dur)
            if exp_dur <= 0:
                continue
            if self._mostly_leaking(s_idx, next_s_idx):
                continue

            window = positive_flow[s_idx : e_idx + 1]
            tidal_volume = float(np.sum((window[:-1] + window[1:]) / 2.0) / 60.0 * dt)
            resp_rate = 60.0 / breath_dur

            yield Breath(
                start_epoch_ms=flow.epoch_ms_at(s_idx),
                insp_end_epoch_ms=flow.epoch_ms_at(e_idx),
                end_epoch_ms=flow.epoch_ms_at(next_s_idx),
                tidal_volume_l=tidal_volume,
                resp_rate_bpm=resp_rate,
                minute_ventilation_lpm=tidal_volume * resp_rate,
                insp_time_sec=insp_dur,
                exp_time_sec=exp_dur,
                ie_ratio=insp_dur / exp_dur,
            )

    def segment(self) -> list[Breath]:
        """All accepted breaths as a list."""
        breaths = list(self.analyze())
        logger.debug(f"Segmented {len(breaths)} breaths from {len(self.flow)} samples")
        return breaths
