"""Tests for the periodic task scheduler."""

import threading
import time

import pytest

from runner.scheduler import Scheduler


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_tasks_run_on_independent_cadences():
    scheduler = Scheduler(shutdown_timeout_seconds=2)
    fast, slow = [], []
    scheduler.add_task("fast", 0.02, lambda: fast.append(1))
    scheduler.add_task("slow", 10, lambda: slow.append(1))

    scheduler.start()
    assert _wait_for(lambda: len(fast) >= 5)
    assert scheduler.stop() is True

    assert len(slow) == 1
    assert not scheduler.is_running


def test_run_immediately_false_waits_one_interval():
    scheduler = Scheduler()
    calls = []
    scheduler.add_task("later", 10, lambda: calls.append(1), run_immediately=False)
    scheduler.start()
    time.sleep(0.05)
    assert scheduler.stop() is True
    assert calls == []


def test_failing_task_keeps_running_and_is_counted():
    scheduler = Scheduler()
    calls = []

    def boom():
        calls.append(1)
        raise RuntimeError("boom")

    scheduler.add_task("boom", 0.01, boom)
    scheduler.start()
    assert _wait_for(lambda: len(calls) >= 3)
    scheduler.stop()

    stats = scheduler.task_stats()["boom"]
    assert stats["failures"] == stats["runs"]
    assert stats["runs"] >= 3


def test_stop_reports_task_exceeding_deadline():
    scheduler = Scheduler(shutdown_timeout_seconds=0.1)
    release = threading.Event()
    started = threading.Event()

    def stuck():
        started.set()
        release.wait(5)

    scheduler.add_task("stuck", 60, stuck)
    scheduler.start()
    assert started.wait(1)

    began = time.monotonic()
    assert scheduler.stop() is False
    assert time.monotonic() - began < 1.0
    assert scheduler.task_stats()["stuck"]["in_flight"] is True
    release.set()


def test_request_stop_unblocks_wait():
    scheduler = Scheduler()
    scheduler.add_task("noop", 60, lambda: None)
    scheduler.start()

    threading.Timer(0.05, scheduler.request_stop).start()
    scheduler.wait(poll_seconds=0.01)

    assert scheduler.stop_requested
    assert scheduler.stop(timeout=1) is True


def test_run_once_records_stats_and_hook():
    seen = []
    scheduler = Scheduler(on_cycle=lambda name, duration, failed: seen.append((name, failed)))
    scheduler.add_task("once", 60, lambda: None)

    assert scheduler.run_once("once") is True
    assert scheduler.task_stats()["once"]["runs"] == 1
    assert seen == [("once", False)]


def test_add_task_validation():
    scheduler = Scheduler()
    scheduler.add_task("a", 1, lambda: None)
    with pytest.raises(ValueError):
        scheduler.add_task("a", 1, lambda: None)
    with pytest.raises(ValueError):
        scheduler.add_task("b", 0, lambda: None)
    scheduler.start()
    with pytest.raises(RuntimeError):
        scheduler.add_task("c", 1, lambda: None)
    scheduler.stop()
