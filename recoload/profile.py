"""
Load profiles: the stage ramp and the thresholds for one run.

A profile is a small YAML document::

    start_target: 0
    stages:
      - {duration: 30s, target: 10}
      - {duration: 1m, target: 50}
    thresholds:
      http_req_duration: ["p(95)<500"]
      errors: ["rate<0.1"]

Keys that are absent fall back to :data:`DEFAULT_STAGES` and
:data:`DEFAULT_THRESHOLDS`.  Anything malformed raises
:class:`ProfileError` so the run aborts before a single request is sent.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from recoload.checks import ACTION_ERROR_METRICS, CHECKS_METRIC, ERROR_METRIC
from recoload.driver import LATENCY_METRIC
from recoload.stages import StageScheduler
from recoload.thresholds import ThresholdConfigError, ThresholdEvaluator

DEFAULT_STAGES: list[dict[str, Any]] = [
    {"duration": "30s", "target": 10},
    {"duration": "1m", "target": 50},
    {"duration": "2m", "target": 100},
    {"duration": "30s", "target": 0},
]

DEFAULT_THRESHOLDS: dict[str, list[str]] = {
    "http_req_duration": ["p(95)<500"],
    "errors": ["rate<0.1"],
}

# Metrics a profile may set thresholds on.
METRIC_KINDS: dict[str, str] = {
    LATENCY_METRIC: "trend",
    ERROR_METRIC: "rate",
    CHECKS_METRIC: "rate",
    **{name: "rate" for name in ACTION_ERROR_METRICS.values()},
}


class ProfileError(ValueError):
    """The load profile is missing, unreadable, or invalid."""


@dataclass(frozen=True)
class LoadProfile:
    """Parsed profile ready to drive a run."""

    scheduler: StageScheduler
    evaluator: ThresholdEvaluator

    @classmethod
    def from_dict(cls, data: Any) -> LoadProfile:
        """
        Build a profile from already-parsed YAML.

        Args:
            data: A mapping, or ``None`` for an empty document.

        Raises:
            ProfileError: If stages or thresholds are invalid.
        """
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ProfileError(f"Profile must be a mapping, got {type(data).__name__}")

        stages = data.get("stages", DEFAULT_STAGES)
        if not isinstance(stages, list) or not stages:
            raise ProfileError("Profile 'stages' must be a non-empty list")

        start_target = data.get("start_target", 0)
        if isinstance(start_target, bool) or not isinstance(start_target, int):
            raise ProfileError(f"Profile 'start_target' must be an integer, got {start_target!r}")

        try:
            scheduler = StageScheduler.from_config(stages, start_target=start_target)
        except ValueError as exc:
            raise ProfileError(f"Invalid stages: {exc}") from exc

        try:
            evaluator = ThresholdEvaluator(data.get("thresholds", DEFAULT_THRESHOLDS), METRIC_KINDS)
        except ThresholdConfigError as exc:
            raise ProfileError(f"Invalid thresholds: {exc}") from exc

        return cls(scheduler=scheduler, evaluator=evaluator)


def default_profile() -> LoadProfile:
    return LoadProfile.from_dict({})


def load_profile(path: str | Path | None) -> LoadProfile:
    """
    Read a profile from *path*, or return the defaults when *path* is ``None``.

    Raises:
        ProfileError: If the file is missing, is not valid YAML, or
            describes an invalid ramp or threshold.
    """
    if path is None:
        return default_profile()

    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except OSError as exc:
        raise ProfileError(f"Cannot read profile {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ProfileError(f"Profile {path} is not valid YAML: {exc}") from exc

    return LoadProfile.from_dict(data)
