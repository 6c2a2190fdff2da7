import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

import structlog

from utils.date_helpers import now

log = structlog.get_logger(__name__)


class BackgroundStatus(Enum):
    AVAILABLE = "available"
    RESTRICTED = "restricted"
    DENIED = "denied"


class TaskResult(Enum):
    NEW_DATA = "new_data"
    FAILED = "failed"


@dataclass
class _Registration:
    name: str
    task: Callable[[], object]
    minimum_interval: timedelta
    stop: threading.Event = field(default_factory=threading.Event)
    thread: Optional[threading.Thread] = None
    last_run_at: Optional[datetime] = None
    last_result: Optional[TaskResult] = None


class BackgroundTaskService:
    """Runs registered tasks periodically on daemon threads.

    Each task first runs one minimum_interval after registration. With
    start_threads=False nothing runs on its own and run_now() drives it.
    """

    def __init__(self, enabled: bool = True, start_threads: bool = True):
        self._enabled = enabled
        self._start_threads = start_threads
        self._tasks: dict[str, _Registration] = {}
        self._lock = threading.Lock()

    def status(self) -> BackgroundStatus:
        return BackgroundStatus.AVAILABLE if self._enabled else BackgroundStatus.DENIED

    def is_registered(self, name: str) -> bool:
        with self._lock:
            return name in self._tasks

    def register(self, name: str, task: Callable[[], object], minimum_interval: timedelta) -> bool:
        """Register task under name. Registering an existing name is a no-op."""
        if not self._enabled:
            log.warning("background_task_denied", task=name)
            return False
        if minimum_interval.total_seconds() <= 0:
            raise ValueError("minimum_interval must be positive.")

        with self._lock:
            if name in self._tasks:
                log.debug("background_task_already_registered", task=name)
                return True
            reg = _Registration(name=name, task=task, minimum_interval=minimum_interval)
            self._tasks[name] = reg

        if self._start_threads:
            reg.thread = threading.Thread(
                target=self._loop, args=(reg,), name=f"bg-{name}", daemon=True
            )
            reg.thread.start()
        log.info(
            "background_task_registered",
            task=name,
            interval_seconds=int(minimum_interval.total_seconds()),
        )
        return True

    def unregister(self, name: str) -> bool:
        with self._lock:
            reg = self._tasks.pop(name, None)
        if reg is None:
            return False
        reg.stop.set()
        log.info("background_task_unregistered", task=name)
        return True

    def shutdown(self) -> None:
        with self._lock:
            names = list(self._tasks)
        for name in names:
            self.unregister(name)

    def last_result(self, name: str) -> TaskResult | None:
        with self._lock:
            reg = self._tasks.get(name)
        return reg.last_result if reg else None

    def run_now(self, name: str) -> TaskResult | None:
        """Run a registered task on the calling thread."""
        with self._lock:
            reg = self._tasks.get(name)
        if reg is None:
            return None
        return self._run(reg)

    def _run(self, reg: _Registration) -> TaskResult:
        log.info("background_task_running", task=reg.name)
        try:
            reg.task()
            reg.last_result = TaskResult.NEW_DATA
        except Exception:
            log.exception("background_task_failed", task=reg.name)
            reg.last_result = TaskResult.FAILED
        reg.last_run_at = now()
        return reg.last_result

    def _loop(self, reg: _Registration) -> None:
        interval = reg.minimum_interval.total_seconds()
        while not reg.stop.wait(interval):
            self._run(reg)
