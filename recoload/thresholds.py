"""
Threshold parsing and pass/fail evaluation.

Thresholds are written per metric as small predicate strings::

    http_req_duration: ["p(95)<500"]
    errors: ["rate<0.1"]

Each string is ``<aggregation><operator><number>``.  The evaluator asks a
metric *source* for the aggregated value, so the same thresholds can gate
an in-process :class:`~recoload.metrics.MetricsCollector`, a Locust
``*_stats.csv``, or the live statistics on a Locust master.

Exit codes follow a three-state convention so that CI can distinguish
"thresholds breached" from "script crashed":

- ``0`` -- all thresholds passed
- ``1`` -- at least one threshold was breached
- ``2`` -- the run itself failed (bad profile, missing file, etc.)
"""

from __future__ import annotations

import csv
import operator
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

EXIT_PASS = 0
EXIT_THRESHOLD_BREACH = 1
EXIT_SCRIPT_ERROR = 2

_EXPRESSION = re.compile(
    r"^\s*(?P<aggregation>rate|count|avg|min|max|med|p\(\s*\d+(?:\.\d+)?\s*\))"
    r"\s*(?P<operator><=|>=|==|!=|<|>)\s*"
    r"(?P<value>-?\d+(?:\.\d+)?)\s*$"
)

_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}


class ThresholdConfigError(ValueError):
    """A threshold expression could not be parsed."""


class MetricSource(Protocol):
    def aggregate(self, name: str, aggregation: str) -> float | None: ...


@dataclass(frozen=True)
class Threshold:
    """A single parsed predicate over one metric."""

    metric: str
    expression: str
    aggregation: str
    operator: str
    value: float

    @classmethod
    def parse(cls, metric: str, expression: str) -> Threshold:
        """
        Parse ``"p(95)<500"``-style text.

        Raises:
            ThresholdConfigError: If the text is not a valid predicate or
                the percentile is outside ``0..100``.
        """
        if not isinstance(expression, str):
            raise ThresholdConfigError(f"Threshold for {metric!r} must be a string, got {expression!r}")
        match = _EXPRESSION.match(expression)
        if not match:
            raise ThresholdConfigError(f"Invalid threshold for {metric!r}: {expression!r}")

        aggregation = re.sub(r"\s+", "", match.group("aggregation"))
        if aggregation.startswith("p("):
            pct = float(aggregation[2:-1])
            if pct > 100:
                raise ThresholdConfigError(f"Percentile out of range in {expression!r}")

        return cls(
            metric=metric,
            expression=expression.strip(),
            aggregation=aggregation,
            operator=match.group("operator"),
            value=float(match.group("value")),
        )

    def holds(self, actual: float) -> bool:
        return _OPERATORS[self.operator](actual, self.value)


@dataclass(frozen=True)
class ThresholdResult:
    threshold: Threshold
    actual: float | None
    passed: bool


@dataclass
class ThresholdReport:
    """Per-threshold results plus the overall verdict."""

    results: list[ThresholdResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(result.passed for result in self.results)

    @property
    def exit_code(self) -> int:
        return EXIT_PASS if self.passed else EXIT_THRESHOLD_BREACH

    def failed(self) -> list[ThresholdResult]:
        return [result for result in self.results if not result.passed]

    def format_summary(self) -> str:
        """Render a fixed-width results table for CI logs."""
        lines = [
            "Performance Threshold Check",
            "-" * 72,
            f"{'Metric':<22}{'Threshold':<18}{'Actual':>14}{'Status':>12}",
            "-" * 72,
        ]
        for result in self.results:
            actual = "n/a" if result.actual is None else f"{result.actual:.4f}"
            status = "PASS" if result.passed else "FAIL"
            lines.append(
                f"{result.threshold.metric:<22}{result.threshold.expression:<18}{actual:>14}{status:>12}"
            )
        lines.append("-" * 72)
        lines.append(f"Overall: {'PASS' if self.passed else 'FAIL'}")
        return "\n".join(lines)


def parse_thresholds(config: Mapping[str, Any]) -> list[Threshold]:
    """
    Parse a ``metric -> expression(s)`` mapping.

    A single string is accepted in place of a one-element list.
    """
    if not isinstance(config, Mapping):
        raise ThresholdConfigError(f"Thresholds must be a mapping, got {type(config).__name__}")

    thresholds = []
    for metric, expressions in config.items():
        if isinstance(expressions, str):
            expressions = [expressions]
        if not isinstance(expressions, Sequence) or not expressions:
            raise ThresholdConfigError(f"Thresholds for {metric!r} must be a non-empty list")
        for expression in expressions:
            thresholds.append(Threshold.parse(str(metric), expression))
    return thresholds


# Aggregations that make sense for each kind of metric.
_KIND_AGGREGATIONS: dict[str, tuple[str, ...]] = {
    "rate": ("rate", "count"),
    "trend": ("count", "avg", "min", "max", "med"),
}


def _check_metric(threshold: Threshold, metric_kinds: Mapping[str, str]) -> None:
    kind = metric_kinds.get(threshold.metric)
    if kind is None:
        known = ", ".join(sorted(metric_kinds))
        raise ThresholdConfigError(f"Unknown metric {threshold.metric!r} (known: {known})")

    aggregation = threshold.aggregation
    if aggregation in _KIND_AGGREGATIONS[kind] or (kind == "trend" and aggregation.startswith("p(")):
        return
    raise ThresholdConfigError(f"{threshold.expression!r} does not apply to {kind} metric {threshold.metric!r}")


class ThresholdEvaluator:
    """
    Evaluate a fixed set of thresholds against a metric source.

    Parsing happens in the constructor so that a bad profile fails
    before any virtual user starts.

    Args:
        thresholds: ``metric -> expression(s)`` mapping.
        metric_kinds: Optional ``metric -> "rate" | "trend"`` mapping.
            When given, thresholds on other metrics, or with an
            aggregation the metric's kind does not support, are rejected.
    """

    def __init__(self, thresholds: Mapping[str, Any], metric_kinds: Mapping[str, str] | None = None) -> None:
        self.thresholds = parse_thresholds(thresholds)
        if metric_kinds is not None:
            for threshold in self.thresholds:
                _check_metric(threshold, metric_kinds)

    def evaluate(self, source: MetricSource) -> ThresholdReport:
        """
        Compare every threshold with the source's current values.

        A metric without samples fails its thresholds: a run that never
        reached a service has not demonstrated anything.
        """
        report = ThresholdReport()
        for threshold in self.thresholds:
            actual = source.aggregate(threshold.metric, threshold.aggregation)
            passed = actual is not None and threshold.holds(actual)
            report.results.append(ThresholdResult(threshold=threshold, actual=actual, passed=passed))
        return report


# =====================================================================
# Locust sources
# =====================================================================


def _parse_float(value: Any, field_name: str) -> float:
    """Coerce a CSV cell to ``float``, stripping ``%`` suffixes if present."""
    if value is None:
        raise ValueError(f"Missing field: {field_name}")

    text = str(value).strip().replace("%", "")
    if text in ("", "N/A"):
        raise ValueError(f"Empty value for field: {field_name}")

    try:
        return float(text)
    except ValueError as exc:
        raise ValueError(f"Non-numeric value for {field_name}: {value}") from exc


def _percent(aggregation: str) -> float:
    return float(aggregation[2:-1])


class LocustStatsSource:
    """
    Expose a Locust stats CSV as a metric source.

    Metrics listed in *metric_requests* read the row Locust wrote for
    that request (``Type``/``Name``); every other metric reads the
    ``Aggregated`` row.  ``rate`` is ``Failure Count / Request Count``,
    ``p(N)`` reads the ``N%`` column, and ``avg``/``min``/``max``/``med``
    read the matching response-time columns.  Locust only writes a fixed
    set of percentile columns, so a percentile it does not report yields
    ``None``, as does a mapped request with no row.
    """

    _COLUMNS = {
        "avg": ("Average Response Time",),
        "min": ("Min Response Time",),
        "max": ("Max Response Time",),
        "med": ("Median Response Time", "50%"),
    }

    def __init__(
        self,
        row: Mapping[str, str],
        request_rows: Mapping[tuple[str, str], Mapping[str, str]] | None = None,
        metric_requests: Mapping[str, tuple[str, str]] | None = None,
    ) -> None:
        self.row = dict(row)
        self.request_rows = {key: dict(value) for key, value in (request_rows or {}).items()}
        self.metric_requests = dict(metric_requests or {})

    @classmethod
    def from_csv(
        cls, stats_path: Path, metric_requests: Mapping[str, tuple[str, str]] | None = None
    ) -> LocustStatsSource:
        """
        Load the ``Aggregated`` row, and the per-request rows, from *stats_path*.

        Raises:
            ValueError: If no ``Aggregated`` row is found.
        """
        with Path(stats_path).open("r", encoding="utf-8", newline="") as handle:
            rows = list(csv.DictReader(handle))

        aggregated = None
        request_rows = {}
        for row in rows:
            if row.get("Name") == "Aggregated" or row.get("Type") == "Aggregated":
                aggregated = row
            else:
                request_rows[(row.get("Type") or "", row.get("Name") or "")] = row
        if aggregated is None:
            raise ValueError("Could not find 'Aggregated' row in stats CSV")
        return cls(aggregated, request_rows, metric_requests)

    def _row_for(self, name: str) -> dict[str, str] | None:
        if name in self.metric_requests:
            return self.request_rows.get(self.metric_requests[name])
        return self.row

    @staticmethod
    def _column(row: Mapping[str, str], *candidates: str) -> float | None:
        for candidate in candidates:
            if row.get(candidate) not in (None, "", "N/A"):
                return _parse_float(row[candidate], candidate)
        return None

    def aggregate(self, name: str, aggregation: str) -> float | None:
        row = self._row_for(name)
        if row is None:
            return None
        request_count = _parse_float(row.get("Request Count"), "Request Count")
        if request_count <= 0:
            return None

        if aggregation == "rate":
            failure_count = _parse_float(row.get("Failure Count"), "Failure Count")
            return failure_count / request_count
        if aggregation == "count":
            return request_count
        if aggregation in self._COLUMNS:
            return self._column(row, *self._COLUMNS[aggregation])
        if aggregation.startswith("p("):
            label = f"{_percent(aggregation):g}%"
            return self._column(row, label, f"{label}ile")
        return None


class LocustRuntimeStatsSource:
    """
    Expose Locust's in-memory ``RequestStats`` as a metric source.

    Used by the master of a distributed run, where requests are made by
    the workers and only their statistics reach the master.  Name mapping
    and aggregations follow :class:`LocustStatsSource`.
    """

    def __init__(self, stats: Any, metric_requests: Mapping[str, tuple[str, str]] | None = None) -> None:
        self.stats = stats
        self.metric_requests = dict(metric_requests or {})

    def _entry(self, name: str) -> Any:
        if name in self.metric_requests:
            method, request_name = self.metric_requests[name]
            return self.stats.entries.get((request_name, method))
        return self.stats.total

    def aggregate(self, name: str, aggregation: str) -> float | None:
        entry = self._entry(name)
        if entry is None or entry.num_requests <= 0:
            return None

        if aggregation == "rate":
            return entry.num_failures / entry.num_requests
        if aggregation == "count":
            return float(entry.num_requests)
        if aggregation.startswith("p("):
            return float(entry.get_response_time_percentile(_percent(aggregation) / 100))

        value = {
            "avg": entry.avg_response_time,
            "min": entry.min_response_time,
            "max": entry.max_response_time,
            "med": entry.median_response_time,
        }.get(aggregation)
        return None if value is None else float(value)
