"""
Locust integration.

Locust takes over the orchestrator's job: it spawns and retires users
according to :class:`StagedLoadShape`, which simply asks the profile's
:class:`~recoload.stages.StageScheduler` for the current target.  Each
:class:`RecommendationUser` owns one :class:`~recoload.driver.VirtualUserDriver`
wired to the user's ``HttpSession``, so every request and every check
verdict shows up in Locust's statistics while our own checks feed the
shared collector.

When Locust quits, the profile's thresholds are evaluated and a breach
sets the process exit code to ``1``.  A single-process run evaluates the
collector; in a distributed run the workers skip the gate and the master
evaluates the statistics the workers reported.

Key Concepts Demonstrated:
- ``LoadTestShape`` driven by a pure function of run time
- Think time inside the task (``wait_time = constant(0)``) so the fixed
  1s/1s/2s pacing between actions is preserved
- ``events.quitting`` hook for CI pass/fail gating
"""

from __future__ import annotations

import itertools
import logging
import random

from locust import HttpUser, LoadTestShape, constant, events, task
from locust.runners import MasterRunner, WorkerRunner

from recoload.actions import RequestScripts
from recoload.checks import METRIC_REQUESTS, ResponseChecker
from recoload.config import get_config
from recoload.driver import VirtualUserDriver
from recoload.metrics import MetricsCollector
from recoload.profile import load_profile
from recoload.thresholds import LocustRuntimeStatsSource, MetricSource

logger = logging.getLogger(__name__)

CONFIG = get_config()
PROFILE = load_profile(CONFIG.PROFILE_PATH)

# One collector per Locust process, shared by every user greenlet.
METRICS = MetricsCollector()

# Virtual-user ids are allocated in blocks per worker process so session
# ids stay unique across a distributed run.
VU_IDS_PER_WORKER = 100_000

_user_counter = itertools.count(1)


def next_vu_id(runner) -> int:
    """Allocate the next virtual-user id for this process."""
    worker_index = max(getattr(runner, "worker_index", 0), 0)
    return worker_index * VU_IDS_PER_WORKER + next(_user_counter)


class StagedLoadShape(LoadTestShape):
    """
    Follow the profile's stage ramp, then stop the test.

    Locust ramps towards the returned user count at ``spawn_rate`` users
    per second; a generous rate keeps Locust close to the interpolated
    target at every tick.
    """

    scheduler = PROFILE.scheduler
    spawn_rate: float = 10.0

    def tick(self) -> tuple[int, float] | None:
        run_time = self.get_run_time()
        if self.scheduler.is_finished(run_time):
            return None
        return self.scheduler.target_at(run_time), self.spawn_rate


class RecommendationUser(HttpUser):
    """
    One virtual user running ingest, recommend, then popular on a loop.

    The ingestion and recommendation services live on different hosts,
    so requests are built with absolute URLs and ``host`` only serves as
    Locust's required default.
    """

    host = CONFIG.BASE_URL
    wait_time = constant(0)

    def on_start(self) -> None:
        self.driver = VirtualUserDriver(
            next_vu_id(self.environment.runner),
            RequestScripts.from_config(CONFIG),
            ResponseChecker(METRICS),
            METRICS,
            self.client,
            rng=random.Random(),
            think_times=CONFIG.think_times(),
            timeout=CONFIG.REQUEST_TIMEOUT,
            locust_client=True,
        )

    @task
    def iteration(self) -> None:
        self.driver.run_iteration()


@events.test_start.add_listener
def _reset_metrics(environment, **_kwargs) -> None:
    METRICS.reset()


@events.quitting.add_listener
def _evaluate_thresholds(environment, **_kwargs) -> None:
    """Print the threshold table and fail the process on any breach."""
    runner = environment.runner
    if isinstance(runner, WorkerRunner):
        return

    source: MetricSource = METRICS
    if isinstance(runner, MasterRunner):
        source = LocustRuntimeStatsSource(environment.stats, METRIC_REQUESTS)

    report = PROFILE.evaluator.evaluate(source)
    print(report.format_summary())
    if not report.passed:
        logger.error("Thresholds breached: %s", ", ".join(r.threshold.expression for r in report.failed()))
        environment.process_exit_code = report.exit_code
