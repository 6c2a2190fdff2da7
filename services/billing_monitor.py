from datetime import datetime, timedelta
from typing import Callable

import structlog

from services.background_tasks import BackgroundTaskService
from utils.constants import (
    BACKGROUND_INTERVAL_HOURS,
    BACKGROUND_TASK_NAME,
    FOREGROUND_POLL_MINUTES,
    MIN_CHECK_INTERVAL_MINUTES,
)
from utils.date_helpers import format_datetime, now as default_clock

log = structlog.get_logger(__name__)

ACTIVE = "active"
INACTIVE = "inactive"
BACKGROUND = "background"
APP_STATES = (ACTIVE, INACTIVE, BACKGROUND)


class BillingMonitor:
    """Decides when the daily billing tasks run.

    Foreground triggers (app start, return to the foreground, the hourly
    timer) go through maybe_check() and its minimum-interval guard. The
    background registration calls the task directly.
    """

    def __init__(
        self,
        task: Callable[[], object],
        clock: Callable[[], datetime] = default_clock,
        min_interval: timedelta = timedelta(minutes=MIN_CHECK_INTERVAL_MINUTES),
        poll_interval: timedelta = timedelta(minutes=FOREGROUND_POLL_MINUTES),
        background: BackgroundTaskService | None = None,
        background_interval: timedelta = timedelta(hours=BACKGROUND_INTERVAL_HOURS),
        task_name: str = BACKGROUND_TASK_NAME,
    ):
        self._task = task
        self._clock = clock
        self._min_interval = min_interval
        self._poll_interval = poll_interval
        self._background = background
        self._background_interval = background_interval
        self._task_name = task_name
        self._last_check: datetime | None = None
        self._state = ACTIVE

    @property
    def app_state(self) -> str:
        return self._state

    @property
    def last_check(self) -> datetime | None:
        return self._last_check

    @property
    def poll_interval_ms(self) -> int:
        return int(self._poll_interval.total_seconds() * 1000)

    def should_check(self) -> bool:
        if self._last_check is None:
            return True
        return self._clock() - self._last_check >= self._min_interval

    def maybe_check(self) -> bool:
        """Run the daily tasks unless the last check was too recent.

        Returns True when the tasks ran (even if they failed).
        """
        if not self.should_check():
            log.debug("billing_check_skipped", last_check=format_datetime(self._last_check))
            return False

        self._last_check = self._clock()
        log.info("billing_check_started", at=format_datetime(self._last_check))
        try:
            self._task()
        except Exception:
            log.exception("billing_check_failed")
        return True

    # ── Triggers ──────────────────────────────────────────────────────────────

    def on_app_start(self) -> bool:
        ran = self.maybe_check()
        self.register_background()
        return ran

    def on_app_state_change(self, state: str) -> bool:
        if state not in APP_STATES:
            raise ValueError(f"Unknown app state: {state}")
        previous, self._state = self._state, state
        if previous in (INACTIVE, BACKGROUND) and state == ACTIVE:
            log.info("app_returned_to_foreground")
            return self.maybe_check()
        return False

    def on_timer(self) -> bool:
        """Hourly tick; only checks while the app is in the foreground."""
        if self._state != ACTIVE:
            return False
        return self.maybe_check()

    # ── Background registration ───────────────────────────────────────────────

    def register_background(self) -> bool:
        if self._background is None:
            return False
        try:
            return self._background.register(
                self._task_name, self._task, self._background_interval
            )
        except Exception:
            log.exception("background_register_failed", task=self._task_name)
            return False

    def unregister_background(self) -> bool:
        if self._background is None:
            return False
        return self._background.unregister(self._task_name)
