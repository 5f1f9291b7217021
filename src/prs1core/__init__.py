"""
prs1core: decoder and therapy statistics engine for PRS1 CPAP card data.

Decodes chunked event files and EDF/EDF+ waveform files into sessions, and
turns them into breath metrics, time-weighted statistics, episodes and
daily/weekly/monthly aggregates.
"""

import logging

from typing import Any

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = ["DailyAggregator", "Prs1Loader", "TrendAggregator", "WaveformIndex"]


def __getattr__(name: str) -> Any:
    """Lazy load the main entry points to keep ``import prs1core`` light."""
    if name == "Prs1Loader":
        from prs1core.parsers.loader import Prs1Loader

        return Prs1Loader
    if name in ("DailyAggregator", "TrendAggregator"):
        from prs1core.analysis import aggregation

        return getattr(aggregation, name)
    if name == "WaveformIndex":
        from prs1core.waveform.index import WaveformIndex

        return WaveformIndex
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
