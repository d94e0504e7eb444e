"""
Command-line entry point.

Two sub-commands are provided:

- ``recoload run`` drives the target services locally with one thread
  per virtual user, then evaluates the profile's thresholds against the
  collected metrics.
- ``recoload check-stats`` evaluates the same thresholds against the
  ``*_stats.csv`` written by a headless Locust run (``--csv``).

Both exit ``0`` when every threshold passes, ``1`` on a breach and ``2``
when the run could not be carried out (bad profile, unhealthy services,
unreadable CSV).
"""

from __future__ import annotations

import argparse
import logging
import random
import sys
from collections.abc import Sequence
from pathlib import Path

import requests

from recoload.actions import RequestScripts
from recoload.checks import METRIC_REQUESTS, ResponseChecker
from recoload.config import Config, get_config
from recoload.driver import VirtualUserDriver
from recoload.metrics import MetricsCollector
from recoload.orchestrator import ThreadedOrchestrator
from recoload.preflight import ServiceUnavailableError, wait_for_services
from recoload.profile import LoadProfile, ProfileError, load_profile
from recoload.thresholds import (
    EXIT_SCRIPT_ERROR,
    LocustStatsSource,
    ThresholdConfigError,
)

logger = logging.getLogger(__name__)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="recoload",
        description="Staged load generator for the recommendation stack.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Generate load and evaluate thresholds")
    run.add_argument("--profile", type=Path, default=None, help="Path to a YAML load profile")
    run.add_argument("--env", default=None, help="Configuration environment name")
    run.add_argument("--seed", type=int, default=None, help="Seed for reproducible payloads")
    run.add_argument("--tick", type=float, default=1.0, help="Seconds between ramp adjustments")
    run.add_argument(
        "--skip-preflight",
        action="store_true",
        help="Do not wait for the services' /health endpoints",
    )

    check = subparsers.add_parser("check-stats", help="Gate a Locust stats CSV")
    check.add_argument("--stats", required=True, type=Path, help="Path to Locust *_stats.csv file")
    check.add_argument("--profile", type=Path, default=None, help="Path to a YAML load profile")
    check.add_argument("--env", default=None, help="Configuration environment name")

    return parser.parse_args(argv)


def _configure_logging(config_class: type[Config]) -> None:
    logging.basicConfig(
        level=getattr(logging, config_class.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def build_driver_factory(
    config_class: type[Config],
    metrics: MetricsCollector,
    seed: int | None = None,
):
    """
    Return a factory that builds one fully-wired driver per virtual user.

    Each user gets its own ``requests.Session`` (sessions are not shared
    across threads) and its own random generator.  With a *seed*, user
    ``n`` always receives ``Random(seed + n)``, so a rerun replays the
    same payload sequence.
    """
    scripts = RequestScripts.from_config(config_class)
    checker = ResponseChecker(metrics)

    def factory(vu_id: int) -> VirtualUserDriver:
        rng = random.Random(seed + vu_id) if seed is not None else random.Random()
        return VirtualUserDriver(
            vu_id,
            scripts,
            checker,
            metrics,
            requests.Session(),
            rng=rng,
            think_times=config_class.think_times(),
            timeout=config_class.REQUEST_TIMEOUT,
        )

    return factory


def run_load(
    config_class: type[Config],
    profile: LoadProfile,
    *,
    seed: int | None = None,
    tick: float = 1.0,
    metrics: MetricsCollector | None = None,
) -> int:
    """Run *profile* with local threads and return the threshold exit code."""
    metrics = metrics or MetricsCollector()
    metrics.reset()
    orchestrator = ThreadedOrchestrator(build_driver_factory(config_class, metrics, seed), tick=tick)
    summary = orchestrator.run(profile.scheduler)
    logger.info("Peak users: %d, iterations: %d", summary.peak_users, summary.iterations)

    report = profile.evaluator.evaluate(metrics)
    print(report.format_summary())
    return report.exit_code


def _command_run(args: argparse.Namespace, config_class: type[Config]) -> int:
    profile = load_profile(args.profile or config_class.PROFILE_PATH)
    if not args.skip_preflight and config_class.PREFLIGHT_TIMEOUT > 0:
        wait_for_services(
            config_class.BASE_URL,
            config_class.API_URL,
            timeout=config_class.PREFLIGHT_TIMEOUT,
        )
    return run_load(config_class, profile, seed=args.seed, tick=args.tick)


def _command_check_stats(args: argparse.Namespace, config_class: type[Config]) -> int:
    profile = load_profile(args.profile or config_class.PROFILE_PATH)
    source = LocustStatsSource.from_csv(args.stats, METRIC_REQUESTS)
    report = profile.evaluator.evaluate(source)
    print(report.format_summary())
    return report.exit_code


def main(argv: Sequence[str] | None = None) -> int:
    """
    Entry point: parse arguments, dispatch, and map errors to exit codes.

    Returns:
        ``EXIT_PASS`` (0), ``EXIT_THRESHOLD_BREACH`` (1), or
        ``EXIT_SCRIPT_ERROR`` (2).
    """
    args = parse_args(argv)
    config_class = get_config(args.env)
    _configure_logging(config_class)

    commands = {
        "run": _command_run,
        "check-stats": _command_check_stats,
    }
    try:
        return commands[args.command](args, config_class)
    except (ProfileError, ThresholdConfigError, ServiceUnavailableError, OSError, ValueError) as exc:
        print(f"{args.command} failed: {exc}", file=sys.stderr)
        return EXIT_SCRIPT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
