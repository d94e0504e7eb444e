"""
Unit tests for threshold parsing and evaluation.

Also covers the Locust CSV source so that ``recoload check-stats`` gates
Locust output with the same expressions used for local runs.
"""

from __future__ import annotations

import csv
from pathlib import Path

import pytest

from recoload.metrics import MetricsCollector
from recoload.checks import METRIC_REQUESTS
from recoload.thresholds import (
    EXIT_PASS,
    EXIT_THRESHOLD_BREACH,
    LocustRuntimeStatsSource,
    LocustStatsSource,
    Threshold,
    ThresholdConfigError,
    ThresholdEvaluator,
    parse_thresholds,
)

pytestmark = pytest.mark.unit

DEFAULT_THRESHOLDS = {
    "http_req_duration": ["p(95)<500"],
    "errors": ["rate<0.1"],
}


def _write_stats_csv(path: Path, **overrides: str) -> Path:
    row = {
        "Type": "",
        "Name": "Aggregated",
        "Request Count": "200",
        "Failure Count": "4",
        "Median Response Time": "120",
        "Average Response Time": "140.5",
        "Min Response Time": "12",
        "Max Response Time": "910",
        "50%": "120",
        "95%": "430",
        "99%": "700",
    }
    row.update(overrides)
    with path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=list(row))
        writer.writeheader()
        writer.writerow({**row, "Name": "/events [POST]"})
        writer.writerow(row)
    return path


@pytest.mark.parametrize(
    "expression, aggregation, op, value",
    [
        ("p(95)<500", "p(95)", "<", 500.0),
        ("rate<0.1", "rate", "<", 0.1),
        ("avg <= 200", "avg", "<=", 200.0),
        ("p( 99.9 ) < 1500", "p(99.9)", "<", 1500.0),
        ("count>=10", "count", ">=", 10.0),
        ("med!=0", "med", "!=", 0.0),
    ],
)
def test_parse_valid_expressions(expression, aggregation, op, value):
    threshold = Threshold.parse("m", expression)

    assert threshold.aggregation == aggregation
    assert threshold.operator == op
    assert threshold.value == value


@pytest.mark.parametrize("expression", ["p95<500", "rate<", "<0.1", "rate~0.1", "p(101)<5", "avg<fast", ""])
def test_parse_rejects_invalid_expressions(expression):
    with pytest.raises(ThresholdConfigError):
        Threshold.parse("m", expression)


def test_parse_thresholds_accepts_single_string():
    thresholds = parse_thresholds({"errors": "rate<0.1"})
    assert [t.expression for t in thresholds] == ["rate<0.1"]


@pytest.mark.parametrize("config", [["rate<0.1"], {"errors": []}, {"errors": [5]}])
def test_parse_thresholds_rejects_bad_shapes(config):
    with pytest.raises(ThresholdConfigError):
        parse_thresholds(config)


def test_all_endpoints_healthy_and_fast_passes():
    """Scenario: valid 200s under 500 ms satisfy both default thresholds."""
    # Arrange
    metrics = MetricsCollector()
    for i in range(100):
        metrics.record("errors", True)
        metrics.add_sample("http_req_duration", 50 + i)

    # Act
    report = ThresholdEvaluator(DEFAULT_THRESHOLDS).evaluate(metrics)

    # Assert
    assert report.passed
    assert report.exit_code == EXIT_PASS
    assert report.failed() == []


def test_failing_ingest_breaches_error_rate():
    """Scenario: an ingestion endpoint that always 500s fails ``rate<0.1``."""
    metrics = MetricsCollector()
    for _ in range(30):
        metrics.record("errors", False)  # ingest
        metrics.record("errors", True)  # recommend
        metrics.record("errors", True)  # popular
        metrics.add_sample("http_req_duration", 20)

    report = ThresholdEvaluator(DEFAULT_THRESHOLDS).evaluate(metrics)

    assert not report.passed
    assert report.exit_code == EXIT_THRESHOLD_BREACH
    assert [r.threshold.metric for r in report.failed()] == ["errors"]


def test_slow_responses_breach_latency():
    metrics = MetricsCollector()
    for i in range(100):
        metrics.record("errors", True)
        metrics.add_sample("http_req_duration", 900 if i >= 90 else 100)

    report = ThresholdEvaluator(DEFAULT_THRESHOLDS).evaluate(metrics)

    assert [r.threshold.metric for r in report.failed()] == ["http_req_duration"]


def test_metric_without_samples_fails():
    report = ThresholdEvaluator(DEFAULT_THRESHOLDS).evaluate(MetricsCollector())

    assert not report.passed
    assert all(result.actual is None for result in report.results)


def test_summary_table_lists_every_threshold():
    metrics = MetricsCollector()
    metrics.record("errors", True)
    metrics.add_sample("http_req_duration", 10)

    summary = ThresholdEvaluator(DEFAULT_THRESHOLDS).evaluate(metrics).format_summary()

    assert "p(95)<500" in summary
    assert "rate<0.1" in summary
    assert summary.rstrip().endswith("Overall: PASS")


def test_locust_stats_source_reads_aggregated_row(tmp_path):
    source = LocustStatsSource.from_csv(_write_stats_csv(tmp_path / "run_stats.csv"))

    assert source.aggregate("errors", "rate") == pytest.approx(0.02)
    assert source.aggregate("http_req_duration", "p(95)") == 430
    assert source.aggregate("http_req_duration", "avg") == 140.5
    assert source.aggregate("http_req_duration", "med") == 120
    assert source.aggregate("http_req_duration", "p(90)") is None


def test_locust_stats_source_gates_thresholds(tmp_path):
    source = LocustStatsSource.from_csv(_write_stats_csv(tmp_path / "run_stats.csv", **{"95%": "650"}))

    report = ThresholdEvaluator(DEFAULT_THRESHOLDS).evaluate(source)

    assert [r.threshold.metric for r in report.failed()] == ["http_req_duration"]


def test_locust_stats_source_without_requests_fails_thresholds(tmp_path):
    source = LocustStatsSource.from_csv(_write_stats_csv(tmp_path / "run_stats.csv", **{"Request Count": "0"}))

    assert not ThresholdEvaluator(DEFAULT_THRESHOLDS).evaluate(source).passed


def test_locust_stats_source_requires_aggregated_row(tmp_path):
    path = tmp_path / "bad_stats.csv"
    path.write_text("Type,Name,Request Count\nGET,/events,3\n", encoding="utf-8")

    with pytest.raises(ValueError, match="Aggregated"):
        LocustStatsSource.from_csv(path)


@pytest.mark.parametrize(
    "config",
    [
        {"http_req_durations": ["p(95)<500"]},
        {"http_req_duration": ["rate<0.1"]},
        {"errors": ["avg<10"]},
    ],
    ids=["misspelled-metric", "rate-on-trend", "avg-on-rate"],
)
def test_metric_kinds_reject_mismatched_thresholds(config):
    kinds = {"http_req_duration": "trend", "errors": "rate"}

    with pytest.raises(ThresholdConfigError):
        ThresholdEvaluator(config, kinds)


def test_metric_kinds_accept_matching_thresholds():
    kinds = {"http_req_duration": "trend", "errors": "rate"}

    evaluator = ThresholdEvaluator({"http_req_duration": ["p(99.9)<900", "count>10"], "errors": "count<5"}, kinds)

    assert len(evaluator.thresholds) == 3


def test_locust_stats_source_reads_per_request_rows(tmp_path):
    """Per-action error metrics gate the matching request row, not the total."""
    path = tmp_path / "split_stats.csv"
    path.write_text(
        "Type,Name,Request Count,Failure Count\n"
        "POST,/events [POST],50,50\n"
        "GET,/recommendations [GET],50,0\n"
        ",Aggregated,150,50\n",
        encoding="utf-8",
    )

    source = LocustStatsSource.from_csv(path, METRIC_REQUESTS)

    assert source.aggregate("errors_ingest", "rate") == 1.0
    assert source.aggregate("errors_recommend", "rate") == 0.0
    assert source.aggregate("errors", "rate") == pytest.approx(1 / 3)
    # No /popular row was written.
    assert source.aggregate("errors_popular", "rate") is None
    report = ThresholdEvaluator({"errors_ingest": ["rate<0.1"]}).evaluate(source)
    assert report.exit_code == EXIT_THRESHOLD_BREACH


class _StubEntry:
    def __init__(self, num_requests, num_failures, times=(100,)):
        self.num_requests = num_requests
        self.num_failures = num_failures
        self.avg_response_time = sum(times) / len(times)
        self.min_response_time = min(times)
        self.max_response_time = max(times)
        self.median_response_time = sorted(times)[len(times) // 2]
        self._times = sorted(times)

    def get_response_time_percentile(self, percent):
        return self._times[min(int(percent * len(self._times)), len(self._times) - 1)]


class _StubStats:
    def __init__(self, total, entries):
        self.total = total
        self.entries = entries


def test_runtime_stats_source_reads_entries():
    stats = _StubStats(
        total=_StubEntry(20, 1, times=(10, 20, 30, 40)),
        entries={("/events [POST]", "POST"): _StubEntry(10, 1)},
    )

    source = LocustRuntimeStatsSource(stats, METRIC_REQUESTS)

    assert source.aggregate("errors", "rate") == 0.05
    assert source.aggregate("errors_ingest", "rate") == 0.1
    assert source.aggregate("errors_popular", "rate") is None
    assert source.aggregate("http_req_duration", "max") == 40.0
    assert source.aggregate("http_req_duration", "p(95)") == 40.0
    assert source.aggregate("http_req_duration", "count") == 20.0


def test_runtime_stats_source_without_requests_fails_thresholds():
    source = LocustRuntimeStatsSource(_StubStats(total=_StubEntry(0, 0), entries={}))

    report = ThresholdEvaluator(DEFAULT_THRESHOLDS).evaluate(source)

    assert not report.passed
    assert report.exit_code == EXIT_THRESHOLD_BREACH
