"""
Response validation for each action.

A check never raises: a missing field, an HTML error page, or a
truncated body all turn into a failed :class:`CheckResult`.  The outcome
is recorded twice, on the shared error-rate metric (``errors``) and on
the action's own rate (``errors_ingest``, ``errors_recommend``,
``errors_popular``).  The iteration then carries on with the next action.

Rules:

- **Ingest** passes when the status is ``200``.
- **Recommend** and **Popular** pass when the status is ``200`` *and* the
  body is a JSON object with a ``recommendations`` key.  An empty list is
  fine; a missing key is not.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from recoload.actions import REQUEST_LABELS, Action
from recoload.metrics import MetricsCollector

ERROR_METRIC = "errors"

# Fraction of failed sub-checks (the inverse of k6's ``checks`` rate).
CHECKS_METRIC = "check_failures"

# Named sub-checks per action, in evaluation order.
CHECK_NAMES: dict[Action, tuple[str, ...]] = {
    Action.INGEST: ("event ingest status is 200",),
    Action.RECOMMEND: ("recommendations status is 200", "recommendations has data"),
    Action.POPULAR: ("popular status is 200", "popular has recommendations"),
}


def action_metric(metric_name: str, action: Action) -> str:
    """Name of the per-action rate derived from *metric_name*, e.g. ``errors_ingest``."""
    return f"{metric_name}_{action.value}"


ACTION_ERROR_METRICS: dict[Action, str] = {action: action_metric(ERROR_METRIC, action) for action in Action}

# Per-action error metric -> the (method, name) Locust reports that action under.
METRIC_REQUESTS: dict[str, tuple[str, str]] = {
    ACTION_ERROR_METRICS[action]: REQUEST_LABELS[action] for action in Action
}


@dataclass(frozen=True)
class CheckResult:
    """
    Outcome of validating one response.

    Attributes:
        action: The action whose response was checked.
        metric: Error-rate metric the outcome was recorded under.
        passed: ``True`` only if every sub-check passed.
        checks: ``(check name, passed)`` pairs.
        reason: Short description of the first failure, if any.
    """

    action: Action
    metric: str
    passed: bool
    checks: tuple[tuple[str, bool], ...] = ()
    reason: str | None = None


def _safe_json(response: Any) -> dict[str, Any] | None:
    """
    Return the response body as a dict, or ``None`` if it is not one.

    Covers bodies that are not JSON at all (gateway error pages, empty
    bodies) as well as valid JSON whose top level is a list or scalar.
    """
    try:
        data = response.json()
    except ValueError:
        return None

    if isinstance(data, dict):
        return data
    return None


def _has_recommendations(response: Any) -> bool:
    body = _safe_json(response)
    return body is not None and "recommendations" in body


class ResponseChecker:
    """
    Validate responses and record the outcomes.

    Args:
        metrics: Collector shared by all virtual users.
        metric_name: Error-rate metric updated once per checked action.
            The same outcome also goes to ``{metric_name}_{action}``.
        checks_metric: Rate metric updated once per named sub-check.
    """

    def __init__(
        self,
        metrics: MetricsCollector,
        metric_name: str = ERROR_METRIC,
        checks_metric: str = CHECKS_METRIC,
    ) -> None:
        self.metrics = metrics
        self.metric_name = metric_name
        self.checks_metric = checks_metric

    def _record_outcome(self, action: Action, passed: bool) -> None:
        self.metrics.record(self.metric_name, passed)
        self.metrics.record(action_metric(self.metric_name, action), passed)

    def evaluate(self, action: Action, response: Any) -> tuple[tuple[str, bool], ...]:
        """Run the sub-checks for *action* without recording anything."""
        status_ok = getattr(response, "status_code", None) == 200
        status_name, *body_names = CHECK_NAMES[action]
        results = [(status_name, status_ok)]
        for name in body_names:
            results.append((name, status_ok and _has_recommendations(response)))
        return tuple(results)

    def check(self, action: Action, response: Any) -> CheckResult:
        """
        Validate *response* for *action* and record the outcome.

        Args:
            action: The action that produced the response.
            response: Any object exposing ``status_code`` and ``json()``
                (``requests.Response`` or Locust's subclass of it).

        Returns:
            The :class:`CheckResult`; never raises on malformed bodies.
        """
        results = self.evaluate(action, response)
        for _, ok in results:
            self.metrics.record(self.checks_metric, ok)

        passed = all(ok for _, ok in results)
        self._record_outcome(action, passed)

        reason = None
        if not passed:
            failed_name = next(name for name, ok in results if not ok)
            reason = f"{failed_name} failed (status {getattr(response, 'status_code', None)})"
        return CheckResult(action=action, metric=self.metric_name, passed=passed, checks=results, reason=reason)

    def transport_failure(self, action: Action, exc: BaseException) -> CheckResult:
        """Record a failure for a request that never produced a response."""
        results = tuple((name, False) for name in CHECK_NAMES[action])
        for _ in results:
            self.metrics.record_failure(self.checks_metric)
        self._record_outcome(action, False)
        return CheckResult(
            action=action,
            metric=self.metric_name,
            passed=False,
            checks=results,
            reason=f"{type(exc).__name__}: {exc}",
        )
