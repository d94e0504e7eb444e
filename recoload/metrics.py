"""
Shared metric store for all virtual users.

Two kinds of metric are kept:

- **Rates** -- pass/fail counter pairs.  ``current_rate`` is the failure
  fraction, so an ``errors`` rate of ``0.05`` means 5 % of checked actions
  failed.
- **Trends** -- raw samples (request latency in milliseconds) from which
  averages and percentiles are computed on demand.

A single instance is created per run and injected into every driver.
All access goes through one lock; each operation is a handful of
arithmetic steps, so contention stays low even with hundreds of users.
"""

from __future__ import annotations

import math
import re
import threading
from dataclasses import dataclass

_PERCENTILE = re.compile(r"^p\((\d+(?:\.\d+)?)\)$")


@dataclass
class RateCounter:
    passes: int = 0
    fails: int = 0

    @property
    def total(self) -> int:
        return self.passes + self.fails


def percentile(samples: list[float], pct: float) -> float:
    """
    Linear-interpolated percentile of *samples*.

    Args:
        samples: Values to rank; need not be sorted.
        pct: Percentile between 0 and 100.

    Returns:
        The interpolated value, or ``0.0`` for an empty list.
    """
    if not samples:
        return 0.0
    ordered = sorted(samples)
    k = (len(ordered) - 1) * (pct / 100.0)
    lower = math.floor(k)
    upper = math.ceil(k)
    if lower == upper:
        return ordered[int(k)]
    return ordered[lower] * (upper - k) + ordered[upper] * (k - lower)


class MetricsCollector:
    """Thread-safe store of rate and trend metrics keyed by name."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rates: dict[str, RateCounter] = {}
        self._trends: dict[str, list[float]] = {}

    # ---- rates -------------------------------------------------------

    def record(self, name: str, passed: bool) -> None:
        with self._lock:
            counter = self._rates.setdefault(name, RateCounter())
            if passed:
                counter.passes += 1
            else:
                counter.fails += 1

    def record_success(self, name: str) -> None:
        self.record(name, True)

    def record_failure(self, name: str) -> None:
        self.record(name, False)

    def counts(self, name: str) -> tuple[int, int]:
        """Return ``(passes, fails)`` for a rate metric."""
        with self._lock:
            counter = self._rates.get(name)
            if counter is None:
                return 0, 0
            return counter.passes, counter.fails

    def current_rate(self, name: str) -> float:
        """Failure fraction in ``[0, 1]``; ``0.0`` before any sample."""
        passes, fails = self.counts(name)
        total = passes + fails
        if total == 0:
            return 0.0
        return fails / total

    # ---- trends ------------------------------------------------------

    def add_sample(self, name: str, value: float) -> None:
        with self._lock:
            self._trends.setdefault(name, []).append(float(value))

    def samples(self, name: str) -> list[float]:
        with self._lock:
            return list(self._trends.get(name, ()))

    def percentile(self, name: str, pct: float) -> float:
        return percentile(self.samples(name), pct)

    def trend_summary(self, name: str) -> dict[str, float]:
        """Return count, avg, min, med, max, p(90) and p(95) for a trend."""
        data = self.samples(name)
        if not data:
            return {"count": 0, "avg": 0.0, "min": 0.0, "med": 0.0, "max": 0.0, "p(90)": 0.0, "p(95)": 0.0}
        return {
            "count": len(data),
            "avg": sum(data) / len(data),
            "min": min(data),
            "med": percentile(data, 50),
            "max": max(data),
            "p(90)": percentile(data, 90),
            "p(95)": percentile(data, 95),
        }

    # ---- evaluation --------------------------------------------------

    def aggregate(self, name: str, aggregation: str) -> float | None:
        """
        Reduce a metric to a single number for threshold evaluation.

        Args:
            name: Metric name.
            aggregation: ``rate`` or ``count`` for rates; ``count``,
                ``avg``, ``min``, ``max``, ``med`` or ``p(N)`` for trends.

        Returns:
            The aggregated value, or ``None`` when the metric has no
            samples or does not support the aggregation.
        """
        with self._lock:
            counter = self._rates.get(name)
            if counter is not None:
                rate_snapshot: RateCounter | None = RateCounter(counter.passes, counter.fails)
            else:
                rate_snapshot = None
            data = list(self._trends.get(name, ()))

        if rate_snapshot is not None and rate_snapshot.total:
            if aggregation == "rate":
                return rate_snapshot.fails / rate_snapshot.total
            if aggregation == "count":
                return float(rate_snapshot.total)

        if not data:
            return None
        if aggregation == "count":
            return float(len(data))
        if aggregation == "avg":
            return sum(data) / len(data)
        if aggregation == "min":
            return min(data)
        if aggregation == "max":
            return max(data)
        if aggregation == "med":
            return percentile(data, 50)
        match = _PERCENTILE.match(aggregation)
        if match:
            return percentile(data, float(match.group(1)))
        return None

    def metric_names(self) -> list[str]:
        with self._lock:
            return sorted(set(self._rates) | set(self._trends))

    def reset(self) -> None:
        """Drop every recorded sample; called once at test start."""
        with self._lock:
            self._rates.clear()
            self._trends.clear()
