"""
Runner: Periodic Task Scheduler

One daemon thread per task, each on its own cadence, sharing a stop event.
Tasks must tolerate concurrent execution with each other; shared trading
state is guarded by the ledger's lock.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class PeriodicTask:
    name: str
    interval_seconds: float
    func: Callable[[], Any]
    run_immediately: bool = True

    # runtime stats
    runs: int = 0
    failures: int = 0
    last_run_at: Optional[float] = None
    last_duration: Optional[float] = None
    in_flight: bool = False
    _thread: Optional[threading.Thread] = field(default=None, repr=False)


class Scheduler:
    """
    Run periodic tasks until stopped.

    Shutdown: `request_stop()` only signals (safe from a signal handler);
    `stop(timeout)` signals and joins every task thread against a single
    deadline, reporting tasks still in flight when it expires.
    """

    def __init__(
        self,
        shutdown_timeout_seconds: float = 30.0,
        on_cycle: Optional[Callable[[str, float, bool], None]] = None,
    ):
        self.shutdown_timeout_seconds = float(shutdown_timeout_seconds)
        self._on_cycle = on_cycle
        self._tasks: Dict[str, PeriodicTask] = {}
        self._stop_event = threading.Event()
        self._started = False
        self._lock = threading.Lock()

    def add_task(self, name: str, interval_seconds: float, func: Callable[[], Any], run_immediately: bool = True) -> PeriodicTask:
        if interval_seconds <= 0:
            raise ValueError(f"interval for {name} must be > 0, got {interval_seconds}")
        if name in self._tasks:
            raise ValueError(f"task {name} already registered")
        if self._started:
            raise RuntimeError("cannot add tasks after start()")
        task = PeriodicTask(name, float(interval_seconds), func, run_immediately)
        self._tasks[name] = task
        return task

    @property
    def tasks(self) -> List[PeriodicTask]:
        return list(self._tasks.values())

    @property
    def is_running(self) -> bool:
        return self._started and not self._stop_event.is_set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        for task in self._tasks.values():
            thread = threading.Thread(target=self._run_task, args=(task,), name=f"task-{task.name}", daemon=True)
            task._thread = thread
            thread.start()
            logger.info(f"Scheduled task '{task.name}' every {task.interval_seconds:g}s")

    def run_once(self, name: str) -> bool:
        """Run a task synchronously in the caller's thread. Returns success."""
        return self._execute(self._tasks[name])

    def _run_task(self, task: PeriodicTask) -> None:
        if not task.run_immediately and self._stop_event.wait(task.interval_seconds):
            return
        while not self._stop_event.is_set():
            self._execute(task)
            if self._stop_event.wait(task.interval_seconds):
                break
        logger.debug(f"Task '{task.name}' loop exited")

    def _execute(self, task: PeriodicTask) -> bool:
        started = time.monotonic()
        ok = True
        task.in_flight = True
        try:
            task.func()
        except Exception as e:
            ok = False
            logger.error(f"Task '{task.name}' failed: {e}", exc_info=True)
        finally:
            duration = time.monotonic() - started
            task.in_flight = False
            with self._lock:
                task.runs += 1
                if not ok:
                    task.failures += 1
                task.last_run_at = time.time()
                task.last_duration = duration
        if self._on_cycle:
            try:
                self._on_cycle(task.name, duration, not ok)
            except Exception as e:
                logger.debug(f"cycle hook failed for {task.name}: {e}")
        return ok

    def request_stop(self) -> None:
        self._stop_event.set()

    def stop(self, timeout: Optional[float] = None) -> bool:
        """
        Stop all tasks.

        Returns:
            True if every task thread exited before the deadline
        """
        self._stop_event.set()
        if not self._started:
            return True

        limit = self.shutdown_timeout_seconds if timeout is None else float(timeout)
        deadline = time.monotonic() + limit
        current = threading.current_thread()
        for task in self._tasks.values():
            thread = task._thread
            if thread is None or thread is current:
                continue
            thread.join(max(0.0, deadline - time.monotonic()))

        stuck = [t.name for t in self._tasks.values() if t._thread is not None and t._thread.is_alive() and t._thread is not current]
        if stuck:
            logger.error(f"Shutdown deadline ({limit:g}s) exceeded; tasks still in flight: {', '.join(stuck)}")
            return False
        logger.info("All scheduled tasks stopped")
        return True

    def wait(self, poll_seconds: float = 1.0) -> None:
        """Block until a stop is requested."""
        while not self._stop_event.wait(poll_seconds):
            pass

    def task_stats(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {
                t.name: {
                    "interval_seconds": t.interval_seconds,
                    "runs": t.runs,
                    "failures": t.failures,
                    "last_run_at": t.last_run_at,
                    "last_duration": t.last_duration,
                    "in_flight": t.in_flight,
                }
                for t in self._tasks.values()
            }
