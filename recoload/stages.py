"""
Staged concurrency ramp.

A load profile is an ordered list of stages, each saying "over this
duration, move the number of virtual users towards this target".  The
:class:`StageScheduler` turns that list into a pure function of elapsed
time so that any host (the local thread orchestrator or a Locust
``LoadTestShape``) can ask how many users should be active right now.

Durations accept the compact notation used by most load-testing tools:
``"500ms"``, ``"30s"``, ``"1m"``, ``"1m30s"``, ``"2h"``, or a plain number of
seconds.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")

_UNIT_SECONDS = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: str | int | float) -> float:
    """
    Convert a duration to seconds.

    Args:
        value: A number of seconds, or a string made of one or more
            ``<number><unit>`` parts such as ``"1m30s"``.

    Returns:
        The duration in seconds.

    Raises:
        ValueError: If the string is empty, has unknown units, or the
            result is negative.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = str(value).strip().lower()
        if not text:
            raise ValueError("Duration must not be empty")
        try:
            seconds = float(text)
        except ValueError:
            seconds = 0.0
            position = 0
            for match in _DURATION_PART.finditer(text):
                if match.start() != position:
                    break
                seconds += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
                position = match.end()
            if position != len(text):
                raise ValueError(f"Invalid duration: {value!r}") from None

    if not math.isfinite(seconds) or seconds < 0:
        raise ValueError(f"Duration must be a finite non-negative number: {value!r}")
    return seconds


@dataclass(frozen=True)
class Stage:
    """One segment of the ramp: reach ``target`` users over ``duration`` seconds."""

    duration: float
    target: int

    def __post_init__(self) -> None:
        if self.duration < 0:
            raise ValueError(f"Stage duration must be non-negative, got {self.duration}")
        if self.target < 0:
            raise ValueError(f"Stage target must be non-negative, got {self.target}")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Stage:
        """Build a stage from ``{"duration": "30s", "target": 10}``."""
        try:
            duration = parse_duration(data["duration"])
            target = data["target"]
        except (KeyError, TypeError) as exc:
            raise ValueError(f"Stage must define duration and target: {data!r}") from exc
        if isinstance(target, bool) or not isinstance(target, int):
            raise ValueError(f"Stage target must be an integer: {target!r}")
        return cls(duration=duration, target=target)


class StageScheduler:
    """
    Compute the target number of virtual users for any elapsed time.

    Inside a stage the target moves linearly from the previous stage's
    target (``start_target`` before the first stage) to the stage's own
    target.  After the final stage the final target is held.

    Attributes:
        stages: The immutable stage sequence.
        start_target: Concurrency at ``t = 0``.
    """

    def __init__(self, stages: Iterable[Stage], start_target: int = 0) -> None:
        if start_target < 0:
            raise ValueError(f"start_target must be non-negative, got {start_target}")
        self.stages: tuple[Stage, ...] = tuple(stages)
        self.start_target = start_target

        boundaries = []
        elapsed = 0.0
        for stage in self.stages:
            elapsed += stage.duration
            boundaries.append(elapsed)
        self._boundaries: tuple[float, ...] = tuple(boundaries)

    @classmethod
    def from_config(cls, stages: Sequence[Mapping[str, Any]], start_target: int = 0) -> StageScheduler:
        return cls([Stage.from_mapping(item) for item in stages], start_target=start_target)

    @property
    def total_duration(self) -> float:
        return self._boundaries[-1] if self._boundaries else 0.0

    @property
    def final_target(self) -> int:
        return self.stages[-1].target if self.stages else self.start_target

    def is_finished(self, elapsed: float) -> bool:
        return elapsed >= self.total_duration

    def stage_index_at(self, elapsed: float) -> int | None:
        """Return the index of the stage covering *elapsed*, or ``None`` past the end."""
        if elapsed < 0:
            return 0 if self.stages else None
        for index, end in enumerate(self._boundaries):
            if elapsed < end:
                return index
        return None

    def target_at(self, elapsed: float) -> int:
        """
        Return the target concurrency at *elapsed* seconds since start.

        Values are rounded half-up so a ramp never skips backwards, and a
        stage boundary always yields exactly that boundary's target.
        """
        if elapsed <= 0 or not self.stages:
            return self.start_target

        previous_target = self.start_target
        stage_start = 0.0
        for stage, stage_end in zip(self.stages, self._boundaries):
            if elapsed < stage_end:
                progress = (elapsed - stage_start) / stage.duration
                value = previous_target + (stage.target - previous_target) * progress
                return int(math.floor(value + 0.5))
            previous_target = stage.target
            stage_start = stage_end

        return self.final_target

    def __repr__(self) -> str:
        parts = ", ".join(f"({stage.duration:g}s, {stage.target})" for stage in self.stages)
        return f"StageScheduler([{parts}], start_target={self.start_target})"
