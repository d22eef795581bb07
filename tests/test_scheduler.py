from __future__ import annotations

import threading

import pytest

from prpatrol.orchestrator import PollPassResult
from prpatrol.scheduler import (
    INTERVAL_KEY,
    PollScheduler,
    coerce_interval,
    stored_interval,
)
from prpatrol.state import StateStore


class _RecordingOrchestrator:
    def __init__(self, fail: bool = False) -> None:
        self.passes: list[frozenset[str] | None] = []
        self.fail = fail

    def poll_all(self, only_group_ids=None) -> PollPassResult:
        self.passes.append(only_group_ids)
        if self.fail:
            raise RuntimeError("pass exploded")
        return PollPassResult(status="ok")


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _scheduler(orchestrator, clock=None, **kwargs) -> PollScheduler:
    return PollScheduler(
        orchestrator,
        interval_min=lambda: 5,
        clock=clock or _Clock(),
        **kwargs,
    )


@pytest.mark.parametrize(
    ("value", "expected"),
    [(1, 1), (5, 5), ("10", 10), (30, 30), (2, 5), (None, 5), ("soon", 5), (0, 5)],
)
def test_coerce_interval(value, expected: int) -> None:
    assert coerce_interval(value) == expected


def test_stored_interval_falls_back(state: StateStore) -> None:
    assert stored_interval(state) == 5
    state.set(INTERVAL_KEY, 30)
    assert stored_interval(state) == 30
    state.set(INTERVAL_KEY, 7)
    assert stored_interval(state, 10) == 10


def test_nothing_pending_runs_nothing() -> None:
    orchestrator = _RecordingOrchestrator()
    scheduler = _scheduler(orchestrator)
    assert scheduler.run_pending() is False
    assert orchestrator.passes == []


def test_subset_requests_are_unioned() -> None:
    orchestrator = _RecordingOrchestrator()
    scheduler = _scheduler(orchestrator)
    scheduler.request(["a"])
    scheduler.request(["b", "c"])

    assert scheduler.run_pending() is True
    assert scheduler.run_pending() is False
    assert orchestrator.passes == [frozenset({"a", "b", "c"})]


def test_full_request_absorbs_subsets() -> None:
    orchestrator = _RecordingOrchestrator()
    scheduler = _scheduler(orchestrator)
    scheduler.request(["a"])
    scheduler.request()
    scheduler.request(["b"])

    scheduler.run_pending()

    assert orchestrator.passes == [None]


def test_timer_tick_runs_full_pass() -> None:
    orchestrator = _RecordingOrchestrator()
    clock = _Clock()
    scheduler = _scheduler(orchestrator, clock)
    assert scheduler.run_pending() is False

    clock.now += 5 * 60
    assert scheduler.run_pending() is True
    assert orchestrator.passes == [None]

    clock.now += 60
    assert scheduler.run_pending() is False


def test_reschedule_restarts_timer() -> None:
    orchestrator = _RecordingOrchestrator()
    clock = _Clock()
    scheduler = _scheduler(orchestrator, clock)
    scheduler.run_pending()
    clock.now += 4 * 60
    scheduler.reschedule()
    clock.now += 2 * 60
    assert scheduler.run_pending() is False


def test_failed_pass_reports_and_completes_ticket() -> None:
    errors: list[BaseException] = []
    scheduler = _scheduler(_RecordingOrchestrator(fail=True), on_error=errors.append)
    ticket = scheduler.request()

    scheduler.run_pending()

    assert [str(exc) for exc in errors] == ["pass exploded"]
    assert scheduler.wait(ticket, timeout=0) is True


def test_request_and_wait_with_worker_thread() -> None:
    orchestrator = _RecordingOrchestrator()
    scheduler = PollScheduler(orchestrator, interval_min=lambda: 30)
    worker = threading.Thread(target=scheduler.run_forever, daemon=True)
    worker.start()
    try:
        assert scheduler.request_and_wait(["a"], timeout=5.0) is True
        assert scheduler.last_result is not None
        assert scheduler.last_result.ran
    finally:
        scheduler.stop()
        worker.join(timeout=5.0)
    assert not worker.is_alive()
    assert orchestrator.passes[0] == frozenset({"a"})
