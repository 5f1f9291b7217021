"""
Cross-session waveform index.

Segments of the same signal coming from different files are merged into
one time-sorted track. Adjacent segments are boundary-normalized:

- a small overlap trims the later segment's prefix (new channel, sliced samples)
- a small gap snaps the later segment's start to the previous end (metadata only)
- anything larger is left as-is; both segments stay in the track

No samples are ever synthesized.
"""

import logging

from collections.abc import Iterable
from functools import reduce

from prs1core.config import WaveformSettings
from prs1core.constants import WaveformIndexConstants
from prs1core.models.events import SignalKind
from prs1core.models.session import Session
from prs1core.models.waveform import WaveformChannel

logger = logging.getLogger(__name__)

TRACK_KINDS = (
    SignalKind.FLOW_RATE,
    SignalKind.PRESSURE,
    SignalKind.LEAK,
    SignalKind.RELIEF_ACTIVE,
)


def trim_prefix_to(channel: WaveformChannel, new_start_ms: int) -> WaveformChannel:
    """
    Drop the samples that precede ``new_start_ms``.

    The count is rounded from the time difference. A non-positive count, or
    one that would empty the channel, leaves it untouched.
    """
    count = round((new_start_ms - channel.start_epoch_ms) / 1000.0 * channel.sample_rate_hz)
    if count <= 0 or count >= len(channel):
        return channel
    return channel.drop_prefix(count, new_start_ms)


def snap_start_to(channel: WaveformChannel, new_start_ms: int) -> WaveformChannel:
    """Move the channel start without touching its samples."""
    if new_start_ms == channel.start_epoch_ms:
        return channel
    return channel.with_start(new_start_ms)


def normalize_boundaries(
    segments: list[WaveformChannel],
    max_overlap_ms_snap: int = WaveformIndexConstants.MAX_OVERLAP_MS_SNAP,
    max_gap_ms_snap: int = WaveformIndexConstants.MAX_GAP_MS_SNAP,
) -> list[WaveformChannel]:
    """
    Normalize adjacent boundaries of start-sorted segments.

    Each step sees the previously normalized segment and the next raw one.
    """

    def step(acc: list[WaveformChannel], cur: WaveformChannel) -> list[WaveformChannel]:
        if not acc:
            return [cur]
        prev_end = acc[-1].end_epoch_ms_exclusive
        overlap_ms = prev_end - cur.start_epoch_ms
        gap_ms = cur.start_epoch_ms - prev_end

        if 0 < overlap_ms <= max_overlap_ms_snap:
            return [*acc, trim_prefix_to(cur, prev_end)]
        if 0 < gap_ms <= max_gap_ms_snap:
            return [*acc, snap_start_to(cur, prev_end)]
        return [*acc, cur]

    return reduce(step, segments, [])


class WaveformIndex:
    """
    Per-signal merged timeline.

    Example:
        >>> index = WaveformIndex.build(sessions)
        >>> index.track(SignalKind.FLOW_RATE)
    """

    def __init__(self, tracks: dict[SignalKind, list[WaveformChannel]]):
        self._tracks = tracks

    @classmethod
    def from_channels(
        cls,
        channels: Iterable[tuple[SignalKind, WaveformChannel]],
        max_overlap_ms_snap: int = WaveformIndexConstants.MAX_OVERLAP_MS_SNAP,
        max_gap_ms_snap: int = WaveformIndexConstants.MAX_GAP_MS_SNAP,
    ) -> "WaveformIndex":
        """Build from ``(kind, channel)`` pairs; empty channels are ignored."""
        grouped: dict[SignalKind, list[WaveformChannel]] = {k: [] for k in TRACK_KINDS}
        for kind, channel in channels:
            if kind in grouped and len(channel) > 0:
                grouped[kind].append(channel)

        tracks = {}
        for kind, segments in grouped.items():
            segments.sort(key=lambda c: c.start_epoch_ms)
            tracks[kind] = normalize_boundaries(
                segments,
                max_overlap_ms_snap=max_overlap_ms_snap,
                max_gap_ms_snap=max_gap_ms_snap,
            )

        logger.debug(
            "Waveform index: "
            + ", ".join(f"{k.value}={len(v)}" for k, v in tracks.items())
        )
        return cls(tracks)

    @classmethod
    def build(
        cls,
        sessions: Iterable[Session],
        max_overlap_ms_snap: int = WaveformIndexConstants.MAX_OVERLAP_MS_SNAP,
        max_gap_ms_snap: int = WaveformIndexConstants.MAX_GAP_MS_SNAP,
    ) -> "WaveformIndex":
        """Build from the waveforms attached to ``sessions``."""
        pairs = [
            (kind, channel)
            for session in sessions
            for kind, channel in session.waveforms.items()
        ]
        return cls.from_channels(
            pairs,
            max_overlap_ms_snap=max_overlap_ms_snap,
            max_gap_ms_snap=max_gap_ms_snap,
        )

    @classmethod
    def from_settings(
        cls, sessions: Iterable[Session], settings: WaveformSettings
    ) -> "WaveformIndex":
        """Build from sessions using the configured snap thresholds."""
        return cls.build(
            sessions,
            max_overlap_ms_snap=settings.max_overlap_ms_snap,
            max_gap_ms_snap=settings.max_gap_ms_snap,
        )

    def track(self, kind: SignalKind) -> list[WaveformChannel]:
        return self._tracks.get(kind, [])

    def min_epoch_ms(self, kind: SignalKind) -> int | None:
        segments = self.track(kind)
        return segments[0].start_epoch_ms if segments else None

    def max_epoch_ms_exclusive(self, kind: SignalKind) -> int | None:
        segments = self.track(kind)
        return segments[-1].end_epoch_ms_exclusive if segments else None

    @property
    def is_empty(self) -> bool:
        return all(not segments for segments in self._tracks.values())
