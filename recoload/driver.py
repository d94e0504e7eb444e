"""
Per-virtual-user iteration loop.

One call to :meth:`VirtualUserDriver.run_iteration` walks the fixed
sequence::

    build ingest -> send -> check -> think
    build recommend -> send -> check -> think
    build popular -> send -> check -> think

Nothing that goes wrong with a single request stops the sequence.  A
transport error (timeout, refused connection, DNS failure) is recorded as
a failed check and the driver moves straight on to the next action.

The HTTP session is injected.  A plain ``requests.Session`` is used by
the local orchestrator; under Locust the user's ``HttpSession`` is passed
in so that Locust's own statistics see every request, and every
failed check, too.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import requests

from recoload.actions import Action, RequestScripts, RequestSpec
from recoload.checks import CheckResult, ResponseChecker
from recoload.metrics import MetricsCollector

logger = logging.getLogger(__name__)

LATENCY_METRIC = "http_req_duration"

DEFAULT_THINK_TIMES: tuple[float, float, float] = (1.0, 1.0, 2.0)

ITERATION_ACTIONS: tuple[Action, ...] = (Action.INGEST, Action.RECOMMEND, Action.POPULAR)


@dataclass
class IterationResult:
    """Checks produced by one completed iteration."""

    vu_id: int
    iteration: int
    checks: list[CheckResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(result.passed for result in self.checks)


class VirtualUserDriver:
    """
    Execute iterations for a single virtual user.

    Args:
        vu_id: Identifier of this virtual user, unique within a run.
        scripts: Request builders bound to the target services.
        checker: Validates responses and records outcomes.
        metrics: Collector that receives latency samples.
        session: ``requests.Session`` (or subclass) used to send requests.
        rng: Random source for request payloads; seeded per user for
            reproducible runs.
        think_times: Seconds to pause after the ingest, recommend and
            popular checks respectively.
        timeout: Per-request timeout in seconds.
        sleep: Pause function, replaceable in tests.
        clock: Monotonic clock used to time requests.
        locust_client: *session* is Locust's ``HttpSession``.  Requests
            carry their stable ``name`` and are sent with
            ``catch_response=True`` so each check verdict is reported
            to Locust.  Plain ``requests`` sessions reject both keywords.
    """

    def __init__(
        self,
        vu_id: int,
        scripts: RequestScripts,
        checker: ResponseChecker,
        metrics: MetricsCollector,
        session: requests.Session,
        *,
        rng: random.Random | None = None,
        think_times: tuple[float, float, float] = DEFAULT_THINK_TIMES,
        timeout: float = 10.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.perf_counter,
        locust_client: bool = False,
    ) -> None:
        if len(think_times) != len(ITERATION_ACTIONS):
            raise ValueError(f"Expected {len(ITERATION_ACTIONS)} think times, got {len(think_times)}")
        if any(pause < 0 for pause in think_times):
            raise ValueError("Think times must be non-negative")

        self.vu_id = vu_id
        self.scripts = scripts
        self.checker = checker
        self.metrics = metrics
        self.session = session
        self.rng = rng if rng is not None else random.Random()
        self.think_times = tuple(think_times)
        self.timeout = timeout
        self._sleep = sleep
        self._clock = clock
        self.locust_client = locust_client
        self.iteration = 0

    def _send(self, spec: RequestSpec) -> Any:
        """Issue *spec* and record its latency in milliseconds."""
        kwargs: dict[str, Any] = {
            "headers": dict(spec.headers),
            "data": spec.body,
            "timeout": self.timeout,
        }
        if self.locust_client:
            kwargs["name"] = spec.name
            kwargs["catch_response"] = True

        started = self._clock()
        response = self.session.request(spec.method, spec.url, **kwargs)
        elapsed_ms = (self._clock() - started) * 1000.0
        self.metrics.add_sample(LATENCY_METRIC, elapsed_ms)
        return response

    def _check_reported(self, action: Action, response: Any) -> CheckResult:
        """
        Check a ``catch_response`` response and report the verdict to Locust.

        Locust only counts the request once its context manager exits, so
        a 200 with a bad body shows up as a failure in Locust's statistics
        and CSV output too.
        """
        with response:
            result = self.checker.check(action, response)
            if result.passed:
                response.success()
            else:
                response.failure(result.reason)
        return result

    def perform(self, action: Action) -> CheckResult:
        """Build, send, and check one action; never raises on request errors."""
        spec = self.scripts.build(action, self.rng, self.vu_id, self.iteration)
        try:
            response = self._send(spec)
        except requests.RequestException as exc:
            logger.debug("VU %s %s %s failed: %s", self.vu_id, spec.method, spec.url, exc)
            return self.checker.transport_failure(action, exc)

        if self.locust_client:
            result = self._check_reported(action, response)
        else:
            result = self.checker.check(action, response)
        if not result.passed:
            logger.debug("VU %s %s check failed: %s", self.vu_id, spec.name, result.reason)
        return result

    def run_iteration(self) -> IterationResult:
        """Run the three actions in order, pausing after each check."""
        result = IterationResult(vu_id=self.vu_id, iteration=self.iteration)
        for action, pause in zip(ITERATION_ACTIONS, self.think_times):
            result.checks.append(self.perform(action))
            if pause:
                self._sleep(pause)
        self.iteration += 1
        return result
