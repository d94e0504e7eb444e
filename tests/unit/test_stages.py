"""
Unit tests for the staged concurrency ramp.

Covers duration parsing, stage validation, and the interpolation rules
of :class:`StageScheduler`: exact boundary targets, monotonic ramps in
both directions, and the behaviour before the start and after the end.
"""

from __future__ import annotations

import pytest

from recoload.stages import Stage, StageScheduler, parse_duration

pytestmark = pytest.mark.unit


@pytest.fixture
def default_ramp() -> StageScheduler:
    return StageScheduler.from_config(
        [
            {"duration": "30s", "target": 10},
            {"duration": "1m", "target": 50},
            {"duration": "2m", "target": 100},
            {"duration": "30s", "target": 0},
        ]
    )


@pytest.mark.parametrize(
    "text, expected",
    [
        ("30s", 30.0),
        ("1m", 60.0),
        ("1m30s", 90.0),
        ("500ms", 0.5),
        ("2h", 7200.0),
        ("45", 45.0),
        (12, 12.0),
        (1.5, 1.5),
    ],
)
def test_parse_duration_accepts_common_notations(text, expected):
    assert parse_duration(text) == pytest.approx(expected)


@pytest.mark.parametrize("text", ["", "abc", "10x", "s30", "-5s", -1, "1m 30s"])
def test_parse_duration_rejects_invalid_values(text):
    with pytest.raises(ValueError):
        parse_duration(text)


def test_stage_rejects_negative_target():
    with pytest.raises(ValueError):
        Stage(duration=10, target=-1)


def test_stage_from_mapping_requires_integer_target():
    with pytest.raises(ValueError):
        Stage.from_mapping({"duration": "10s", "target": "ten"})


def test_stage_from_mapping_requires_both_keys():
    with pytest.raises(ValueError):
        Stage.from_mapping({"target": 5})


def test_default_ramp_boundaries(default_ramp):
    """Test the documented targets at every stage boundary."""
    assert default_ramp.target_at(0) == 0
    assert default_ramp.target_at(30) == 10
    assert default_ramp.target_at(90) == 50
    assert default_ramp.target_at(210) == 100
    assert default_ramp.target_at(240) == 0


def test_target_interpolates_linearly_within_stage(default_ramp):
    # Halfway through the second stage: 10 -> 50.
    assert default_ramp.target_at(60) == 30
    # A quarter through the first stage: 0 -> 10, 2.5 rounds up.
    assert default_ramp.target_at(7.5) == 3


def test_ramp_up_is_monotonically_non_decreasing(default_ramp):
    samples = [default_ramp.target_at(t / 10) for t in range(0, 2101)]
    assert samples == sorted(samples)


def test_ramp_down_is_monotonically_non_increasing(default_ramp):
    samples = [default_ramp.target_at(210 + t / 10) for t in range(0, 301)]
    assert samples == sorted(samples, reverse=True)


def test_target_before_start_uses_start_target():
    scheduler = StageScheduler([Stage(10, 20)], start_target=5)

    assert scheduler.target_at(-3) == 5
    assert scheduler.target_at(0) == 5
    assert scheduler.target_at(5) == 13


def test_target_after_end_holds_final_target():
    scheduler = StageScheduler([Stage(10, 20), Stage(10, 40)])

    assert scheduler.target_at(20) == 40
    assert scheduler.target_at(1_000) == 40
    assert scheduler.is_finished(20)
    assert not scheduler.is_finished(19.9)


def test_zero_duration_stage_jumps_to_target():
    scheduler = StageScheduler([Stage(0, 30), Stage(10, 30)])

    assert scheduler.target_at(0.001) == 30
    assert scheduler.target_at(5) == 30


def test_total_duration_and_stage_index(default_ramp):
    assert default_ramp.total_duration == 240
    assert default_ramp.stage_index_at(0) == 0
    assert default_ramp.stage_index_at(30) == 1
    assert default_ramp.stage_index_at(239) == 3
    assert default_ramp.stage_index_at(240) is None


def test_empty_schedule_is_immediately_finished():
    scheduler = StageScheduler([])

    assert scheduler.total_duration == 0
    assert scheduler.is_finished(0)
    assert scheduler.target_at(5) == 0


def test_stages_are_immutable(default_ramp):
    assert isinstance(default_ramp.stages, tuple)
    with pytest.raises(AttributeError):
        default_ramp.stages[0].target = 99
