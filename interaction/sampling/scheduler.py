"""Fixed-period tick scheduler with a single in-flight detection cycle."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

LOGGER = logging.getLogger("interaction.sampling.scheduler")


@dataclass
class SchedulerStats:
    ticks: int = 0
    started: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    active: int = 0
    max_active: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "ticks": self.ticks,
            "started": self.started,
            "completed": self.completed,
            "failed": self.failed,
            "skipped": self.skipped,
            "active": self.active,
            "max_active": self.max_active,
        }


class SamplingScheduler:
    """Runs ``cycle`` every ``period_s`` seconds on a background thread.

    Each cycle executes on its own worker thread. A tick that arrives while a
    cycle is still running is dropped rather than queued: the guard is a lock
    acquired without blocking, so no two cycles ever overlap. ``cancel`` stops
    new ticks immediately and leaves an in-flight cycle to finish.
    """

    def __init__(self, cycle: Callable[[], Any], period_s: float = 2.0, name: str = "sampling") -> None:
        if period_s <= 0:
            raise ValueError(f"period_s must be positive, got {period_s}")
        self.cycle = cycle
        self.period_s = period_s
        self.name = name
        self.stats = SchedulerStats()
        self._stats_lock = threading.Lock()
        self._in_flight = threading.Lock()
        self._cancelled = threading.Event()
        self._timer: Optional[threading.Thread] = None
        self._worker: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._timer is not None and self._timer.is_alive()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def busy(self) -> bool:
        return self._in_flight.locked()

    def start(self) -> None:
        if self.running:
            return
        if self._cancelled.is_set():
            raise RuntimeError("Scheduler was cancelled and cannot be restarted")
        self._timer = threading.Thread(target=self._run, name=f"{self.name}-timer", daemon=True)
        self._timer.start()
        LOGGER.info("Scheduler %s started period=%.2fs", self.name, self.period_s)

    def tick(self) -> bool:
        """Start one cycle unless one is already running. Returns False if skipped."""
        with self._stats_lock:
            self.stats.ticks += 1
        if self._cancelled.is_set():
            return False
        if not self._in_flight.acquire(blocking=False):
            with self._stats_lock:
                self.stats.skipped += 1
            LOGGER.debug("Scheduler %s skipped tick: previous cycle still running", self.name)
            return False
        if self._cancelled.is_set():
            self._in_flight.release()
            return False
        with self._stats_lock:
            self.stats.started += 1
            self.stats.active += 1
            self.stats.max_active = max(self.stats.max_active, self.stats.active)
        worker = threading.Thread(target=self._run_cycle, name=f"{self.name}-cycle", daemon=True)
        self._worker = worker
        worker.start()
        return True

    def _run_cycle(self) -> None:
        failed = False
        try:
            self.cycle()
        except Exception:
            failed = True
            LOGGER.exception("Scheduler %s cycle failed; continuing with next tick", self.name)
        finally:
            with self._stats_lock:
                self.stats.active -= 1
                if failed:
                    self.stats.failed += 1
                else:
                    self.stats.completed += 1
            self._in_flight.release()

    def _run(self) -> None:
        next_deadline = time.monotonic()
        while not self._cancelled.is_set():
            self.tick()
            next_deadline += self.period_s
            delay = next_deadline - time.monotonic()
            if delay < 0:
                # fell behind; realign instead of firing a burst of ticks
                next_deadline = time.monotonic()
                delay = 0.0
            if self._cancelled.wait(delay):
                break
        LOGGER.info("Scheduler %s stopped scheduling: %s", self.name, self.stats.to_dict())

    def cancel(self) -> None:
        self._cancelled.set()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the timer and any in-flight cycle. Returns True when both finished."""
        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in (self._timer, self._worker):
            if thread is None:
                continue
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(remaining)
            if thread.is_alive():
                return False
        return True

    def stop(self, wait: bool = True, timeout: Optional[float] = None) -> bool:
        self.cancel()
        if wait:
            return self.join(timeout)
        return not self.busy
