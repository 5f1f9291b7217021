"""
Weighted statistics over explicit (value, weight) lists.

Used by the day and trend aggregators for breath metrics and roll-ups.
Unlike :mod:`prs1core.analysis.time_weighted`, quantiles here stop at the
first value whose cumulative weight reaches ``total * q`` (no ceiling), so
the two modules can disagree by one step at interval boundaries.
"""

import math

from collections.abc import Sequence
from dataclasses import dataclass


@dataclass(frozen=True)
class WeightedPoint:
    """A value with a weight in seconds."""

    value: float
    weight_seconds: float


class WeightedStats:
    """Statistics over weighted points; non-positive weights are ignored."""

    @staticmethod
    def _valid(points: Sequence[WeightedPoint]) -> list[WeightedPoint]:
        return [p for p in points if p.weight_seconds > 0]

    @classmethod
    def quantile(cls, points: Sequence[WeightedPoint], q: float) -> float | None:
        """
        Weighted quantile, ``q`` clamped to [0, 1].

        Returns:
            First value (by value order) whose cumulative weight reaches
            ``total * q``, or None when no point has weight
        """
        if math.isnan(q):
            return None
        q = min(max(q, 0.0), 1.0)
        valid = sorted(cls._valid(points), key=lambda p: p.value)
        total = sum(p.weight_seconds for p in valid)
        if not valid or total <= 0:
            return None

        target = total * q
        cumulative = 0.0
        for p in valid:
            cumulative += p.weight_seconds
            if cumulative >= target:
                return p.value
        return valid[-1].value

    @classmethod
    def median(cls, points: Sequence[WeightedPoint]) -> float | None:
        return cls.quantile(points, 0.5)

    @classmethod
    def p95(cls, points: Sequence[WeightedPoint]) -> float | None:
        return cls.quantile(points, 0.95)

    @classmethod
    def mean(cls, points: Sequence[WeightedPoint]) -> float | None:
        valid = cls._valid(points)
        total = sum(p.weight_seconds for p in valid)
        if total <= 0:
            return None
        return sum(p.value * p.weight_seconds for p in valid) / total

    @classmethod
    def percent_over(cls, points: Sequence[WeightedPoint], threshold: float) -> float | None:
        """Percentage (0-100) of weight with value strictly above ``threshold``."""
        valid = cls._valid(points)
        total = sum(p.weight_seconds for p in valid)
        if total <= 0:
            return None
        over = sum(p.weight_seconds for p in valid if p.value > threshold)
        return over / total * 100.0


class WeightedValueStats:
    """Weighted quantiles over parallel value and weight lists."""

    @staticmethod
    def weighted_quantile(
        values: Sequence[float], weights: Sequence[float], q: float
    ) -> float | None:
        """
        Weighted quantile; ``q <= 0`` gives the minimum, ``q >= 1`` the maximum.

        Non-finite values and non-positive weights are skipped. Mismatched or
        empty inputs give None.
        """
        if not values or len(values) != len(weights) or math.isnan(q):
            return None
        if q <= 0:
            return WeightedValueStats.min(values)
        if q >= 1:
            return WeightedValueStats.max(values)

        pairs = sorted(
            (v, w)
            for v, w in zip(values, weights)
            if w > 0 and math.isfinite(v)
        )
        total = sum(w for _, w in pairs)
        if not pairs or total <= 0:
            return None

        target = total * q
        cumulative = 0.0
        for v, w in pairs:
            cumulative += w
            if cumulative >= target:
                return v
        return pairs[-1][0]

    @staticmethod
    def weighted_median(values: Sequence[float], weights: Sequence[float]) -> float | None:
        return WeightedValueStats.weighted_quantile(values, weights, 0.5)

    @staticmethod
    def min(values: Sequence[float]) -> float | None:
        return min((v for v in values if math.isfinite(v)), default=None)

    @staticmethod
    def max(values: Sequence[float]) -> float | None:
        return max((v for v in values if math.isfinite(v)), default=None)
