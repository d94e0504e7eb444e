# ruff: noqa: E402
"""
Shared pytest fixtures for the load generator test suite.

No test in this suite opens a socket.  HTTP traffic is replaced by
:class:`~tests.fakes.FakeSession`, which routes requests by path to
canned responses (or raises transport errors), so every driver and
checker code path can be exercised deterministically.

Key Concepts Demonstrated:
- Fixture dependencies (checker -> metrics)
- Factory fixtures for configurable fakes
- Seeded random generators for reproducible request sequences
"""

from __future__ import annotations

import os

# Locust monkey-patches threads into greenlets on import; the orchestrator
# tests need real threads.  Must run before anything imports locust.
os.environ.setdefault("LOCUST_SKIP_MONKEY_PATCH", "1")

import random
from collections.abc import Callable
from typing import Any

import pytest

from recoload.actions import RequestScripts
from recoload.checks import ResponseChecker
from recoload.config import TestingConfig
from recoload.metrics import MetricsCollector
from tests.fakes import FakeSession, healthy_routes


@pytest.fixture
def metrics() -> MetricsCollector:
    """Fresh collector per test so rates never leak between tests."""
    return MetricsCollector()


@pytest.fixture
def checker(metrics) -> ResponseChecker:
    return ResponseChecker(metrics)


@pytest.fixture
def scripts() -> RequestScripts:
    return RequestScripts.from_config(TestingConfig)


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def session_factory() -> Callable[..., FakeSession]:
    """
    Factory fixture for fake sessions that answer like a healthy stack.

    Example:
        def test_something(session_factory):
            session = session_factory({"/events": FakeResponse(500)})
    """

    def _make(overrides: dict[str, Any] | None = None) -> FakeSession:
        routes = healthy_routes()
        routes.update(overrides or {})
        return FakeSession(routes)

    return _make
