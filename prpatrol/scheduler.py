"""Turn timer ticks and poll requests into orchestrator passes.

Passes run one at a time on the scheduler thread. Requests that arrive while a
pass is running are merged into a single follow-up pass: a full request
absorbs subset requests, subset requests are unioned. Nothing is dropped.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from typing import Any

from .orchestrator import PollOrchestrator, PollPassResult
from .state import StateStore

logger = logging.getLogger(__name__)

INTERVAL_KEY = "interval"
VALID_INTERVALS = (1, 5, 10, 30)
DEFAULT_INTERVAL = 5


def coerce_interval(value: Any, default: int = DEFAULT_INTERVAL) -> int:
    try:
        minutes = int(value)
    except (TypeError, ValueError):
        return default
    return minutes if minutes in VALID_INTERVALS else default


def stored_interval(state: StateStore, default: int = DEFAULT_INTERVAL) -> int:
    return coerce_interval(state.get(INTERVAL_KEY), default)


class PollScheduler:
    def __init__(
        self,
        orchestrator: PollOrchestrator,
        *,
        interval_min: Callable[[], int],
        on_error: Callable[[BaseException], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.orchestrator = orchestrator
        self._interval_min = interval_min
        self._on_error = on_error
        self._clock = clock
        self._cond = threading.Condition()
        self._stop = threading.Event()
        self._pending_all = False
        self._pending_ids: set[str] = set()
        self._requested = 0
        self._completed = 0
        self._next_tick: float | None = None
        self.last_result: PollPassResult | None = None

    def _interval_s(self) -> float:
        return float(self._interval_min()) * 60.0

    def request(self, group_ids: Iterable[str] | None = None) -> int:
        """Queue a pass; returns a ticket usable with :meth:`wait`."""
        with self._cond:
            if group_ids is None:
                self._pending_all = True
            else:
                self._pending_ids.update(group_ids)
            self._requested += 1
            ticket = self._requested
            self._cond.notify_all()
            return ticket

    def wait(self, ticket: int, timeout: float | None = None) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: self._completed >= ticket, timeout=timeout)

    def request_and_wait(
        self, group_ids: Iterable[str] | None = None, timeout: float | None = None
    ) -> bool:
        return self.wait(self.request(group_ids), timeout=timeout)

    def reschedule(self) -> None:
        """Restart the periodic timer, e.g. after the interval changed."""
        with self._cond:
            self._next_tick = self._clock() + self._interval_s()
            self._cond.notify_all()

    def stop(self) -> None:
        self._stop.set()
        with self._cond:
            self._cond.notify_all()

    def _take_job(self, *, block: bool) -> tuple[frozenset[str] | None, int] | None:
        with self._cond:
            while not self._stop.is_set():
                if self._next_tick is None:
                    self._next_tick = self._clock() + self._interval_s()
                due = self._clock() >= self._next_tick
                if due or self._pending_all or self._pending_ids:
                    if due:
                        self._next_tick = self._clock() + self._interval_s()
                    ids = None if (due or self._pending_all) else frozenset(self._pending_ids)
                    self._pending_all = False
                    self._pending_ids = set()
                    return ids, self._requested
                if not block:
                    return None
                self._cond.wait(timeout=min(self._next_tick - self._clock(), 1.0))
        return None

    def _run_job(self, ids: frozenset[str] | None, ticket: int) -> None:
        try:
            self.last_result = self.orchestrator.poll_all(ids)
        except Exception as exc:
            logger.exception("poll pass failed")
            if self._on_error is not None:
                self._on_error(exc)
        finally:
            with self._cond:
                self._completed = max(self._completed, ticket)
                self._cond.notify_all()

    def run_pending(self) -> bool:
        """Run at most one due or pending pass on the calling thread."""
        job = self._take_job(block=False)
        if job is None:
            return False
        self._run_job(*job)
        return True

    def run_forever(self) -> None:
        while not self._stop.is_set():
            job = self._take_job(block=True)
            if job is None:
                continue
            self._run_job(*job)
