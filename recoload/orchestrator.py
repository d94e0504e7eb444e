"""
Virtual-user orchestration.

The :class:`Orchestrator` interface is what the stage ramp drives:
``spawn_user`` and ``retire_user`` move the number of active virtual users
one step at a time, and ``rebalance`` moves it to a target in one call.

:class:`ThreadedOrchestrator` is the local implementation used by
``recoload run``: every virtual user is an OS thread looping over
``run_iteration``.  Retiring a user only sets its stop flag; the thread
finishes its current iteration (including any in-flight request) and
then exits.  Under Locust the host runtime plays this role instead.
"""

from __future__ import annotations

import abc
import itertools
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from recoload.driver import VirtualUserDriver
from recoload.stages import StageScheduler

logger = logging.getLogger(__name__)

DriverFactory = Callable[[int], VirtualUserDriver]


class Orchestrator(abc.ABC):
    """Spawns and retires virtual users on behalf of the stage ramp."""

    @property
    @abc.abstractmethod
    def active_users(self) -> int: ...

    @abc.abstractmethod
    def spawn_user(self) -> int:
        """Start one virtual user and return its id."""

    @abc.abstractmethod
    def retire_user(self) -> int | None:
        """Ask the most recently spawned user to stop; return its id."""

    def rebalance(self, target: int) -> None:
        """Spawn or retire users until ``active_users == target``."""
        while self.active_users < target:
            self.spawn_user()
        while self.active_users > target:
            if self.retire_user() is None:
                break


@dataclass
class _UserHandle:
    vu_id: int
    thread: threading.Thread
    stop: threading.Event


@dataclass
class RunSummary:
    """What happened during :meth:`ThreadedOrchestrator.run`."""

    duration: float
    peak_users: int
    iterations: int


class ThreadedOrchestrator(Orchestrator):
    """
    Run each virtual user on its own thread.

    Args:
        driver_factory: Called with a fresh virtual-user id; returns the
            driver that thread will loop over.
        tick: Seconds between ramp adjustments in :meth:`run`.
        join_timeout: Seconds to wait for each retired thread at shutdown.
    """

    def __init__(
        self,
        driver_factory: DriverFactory,
        *,
        tick: float = 1.0,
        join_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if tick <= 0:
            raise ValueError("tick must be positive")
        self._driver_factory = driver_factory
        self.tick = tick
        self.join_timeout = join_timeout
        self._clock = clock
        self._ids = itertools.count(1)
        self._active: list[_UserHandle] = []
        self._retired: list[_UserHandle] = []
        self._lock = threading.Lock()
        self._iterations = 0

    @property
    def active_users(self) -> int:
        with self._lock:
            return len(self._active)

    @property
    def iterations(self) -> int:
        with self._lock:
            return self._iterations

    def _user_loop(self, driver: VirtualUserDriver, stop: threading.Event) -> None:
        while not stop.is_set():
            try:
                driver.run_iteration()
            except Exception:
                # Request errors never reach here; anything that does is a bug
                # in the driver and should not take other users down with it.
                logger.exception("VU %s iteration crashed; retiring user", driver.vu_id)
                return
            with self._lock:
                self._iterations += 1

    def spawn_user(self) -> int:
        vu_id = next(self._ids)
        driver = self._driver_factory(vu_id)
        stop = threading.Event()
        thread = threading.Thread(
            target=self._user_loop,
            args=(driver, stop),
            name=f"vu-{vu_id}",
            daemon=True,
        )
        with self._lock:
            self._active.append(_UserHandle(vu_id=vu_id, thread=thread, stop=stop))
        thread.start()
        logger.debug("Spawned VU %s", vu_id)
        return vu_id

    def retire_user(self) -> int | None:
        with self._lock:
            if not self._active:
                return None
            handle = self._active.pop()
            self._retired.append(handle)
        handle.stop.set()
        logger.debug("Retiring VU %s", handle.vu_id)
        return handle.vu_id

    def stop_all(self) -> None:
        """Retire every user and wait for their threads to finish."""
        self.rebalance(0)
        with self._lock:
            retired = list(self._retired)
            self._retired.clear()
        for handle in retired:
            handle.thread.join(self.join_timeout)
            if handle.thread.is_alive():
                logger.warning("VU %s did not stop within %.1fs", handle.vu_id, self.join_timeout)

    def run(self, scheduler: StageScheduler, stop_event: threading.Event | None = None) -> RunSummary:
        """
        Follow *scheduler* until its last stage ends, then stop everyone.

        Args:
            scheduler: The stage ramp to follow.
            stop_event: Optional event that ends the run early.

        Returns:
            A :class:`RunSummary` with the elapsed time and user counts.
        """
        stop_event = stop_event or threading.Event()
        started = self._clock()
        peak = 0
        last_target = None
        logger.info("Starting run: %s (%.1fs)", scheduler, scheduler.total_duration)

        try:
            while not stop_event.is_set():
                elapsed = self._clock() - started
                if scheduler.is_finished(elapsed):
                    break
                target = scheduler.target_at(elapsed)
                if target != last_target:
                    logger.info("t=%.1fs target users=%d", elapsed, target)
                    last_target = target
                self.rebalance(target)
                peak = max(peak, self.active_users)
                remaining = scheduler.total_duration - elapsed
                stop_event.wait(min(self.tick, max(remaining, 0.0)))
        finally:
            self.stop_all()

        duration = self._clock() - started
        logger.info("Run finished after %.1fs (%d iterations)", duration, self.iterations)
        return RunSummary(duration=duration, peak_users=peak, iterations=self.iterations)
