"""Recurring execution of the badge sync with manual trigger support."""
import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from processor.models import ISO_UTC_FORMAT, ScheduleState, SyncResult

logger = logging.getLogger(__name__)

RUN_IN_PROGRESS = 'sync already in progress'


class IntervalValidationError(ValueError):
    """Requested interval is outside the accepted range."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncScheduler:
    """
    Owns the recurring timer and the last-run state.

    Scheduled ticks and manual triggers share one run lock, so at most one
    sync executes at a time. A scheduled tick that collides with a running
    sync is skipped; a colliding manual trigger gets a failed result.
    """

    MIN_INTERVAL_MINUTES = 5
    MAX_INTERVAL_MINUTES = 120

    def __init__(
        self,
        run_sync: Callable[[bool], SyncResult],
        credentials_configured: bool = True,
        interval_minutes: int = 15,
        startup_delay_seconds: float = 15,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
        clock: Callable[[], datetime] = _utcnow
    ):
        """
        Initialize the scheduler.

        Args:
            run_sync: Orchestration entry point, called with the debug flag
            credentials_configured: Whether portal credentials are available
            interval_minutes: Initial recurrence interval
            startup_delay_seconds: Delay before the first scheduled run
            timer_factory: threading.Timer compatible factory
            clock: Returns the current UTC time
        """
        self._run_sync = run_sync
        self._credentials_configured = credentials_configured
        self._interval_minutes = interval_minutes
        self.startup_delay_seconds = startup_delay_seconds
        self._timer_factory = timer_factory
        self._clock = clock

        self._state_lock = threading.Lock()
        self._run_lock = threading.Lock()
        self._timer = None
        self._generation = 0
        self._running = False
        self._startup_pending = False
        self._last_sync: Optional[str] = None
        self._last_result: Optional[SyncResult] = None

    def start(self, interval_minutes: Optional[int] = None) -> bool:
        """
        Arm the startup timer, then recur every interval.

        Args:
            interval_minutes: Overrides the configured interval

        Returns:
            True if the schedule is active

        Raises:
            IntervalValidationError: If interval_minutes is out of range
        """
        if not self._credentials_configured:
            logger.warning("Portal credentials not configured, sync disabled")
            return False

        if interval_minutes is not None:
            interval_minutes = self.validate_interval(interval_minutes)

        with self._state_lock:
            if self._running:
                logger.info("Scheduler already running")
                return True
            if interval_minutes is not None:
                self._interval_minutes = interval_minutes
            self._running = True
            self._startup_pending = True
            self._arm(self.startup_delay_seconds)

        logger.info(
            f"Sync scheduled every {self._interval_minutes} min "
            f"(first run in {self.startup_delay_seconds}s)"
        )
        return True

    def set_interval(self, interval_minutes: int) -> int:
        """
        Change the recurrence interval, replacing the active timer.

        A pending startup run is kept; the new interval applies from it on.

        Args:
            interval_minutes: New interval in minutes, within [5, 120]

        Returns:
            The interval applied, as an int

        Raises:
            IntervalValidationError: If the interval is out of range
        """
        interval_minutes = self.validate_interval(interval_minutes)

        with self._state_lock:
            self._interval_minutes = interval_minutes
            if self._running and not self._startup_pending:
                self._cancel_timer()
                self._arm(interval_minutes * 60)

        logger.info(f"Sync interval changed to {interval_minutes} min")
        return interval_minutes

    def stop(self) -> None:
        """Cancel the recurring timer."""
        with self._state_lock:
            self._running = False
            self._startup_pending = False
            self._cancel_timer()
        logger.info("Scheduler stopped")

    def trigger_now(self, debug: bool = False) -> SyncResult:
        """
        Run a sync immediately, outside the schedule.

        Args:
            debug: Include the step trace in the result

        Returns:
            SyncResult of the run, or a failed result if a run is in progress
        """
        return self._execute(debug, scheduled=False)

    def status(self) -> ScheduleState:
        """Return a snapshot of the schedule state."""
        with self._state_lock:
            return ScheduleState(
                interval_minutes=self._interval_minutes,
                running=self._running,
                run_in_progress=self._run_lock.locked(),
                last_sync=self._last_sync,
                last_result=self._last_result
            )

    @classmethod
    def validate_interval(cls, interval_minutes: int) -> int:
        """Return the interval as an int; whole floats such as 30.0 are accepted."""
        if isinstance(interval_minutes, float) and interval_minutes.is_integer():
            minutes = int(interval_minutes)
        else:
            minutes = interval_minutes
        if (
            isinstance(minutes, bool)
            or not isinstance(minutes, int)
            or not cls.MIN_INTERVAL_MINUTES <= minutes <= cls.MAX_INTERVAL_MINUTES
        ):
            raise IntervalValidationError(
                f"Invalid interval {interval_minutes!r} "
                f"({cls.MIN_INTERVAL_MINUTES}-{cls.MAX_INTERVAL_MINUTES} minutes)"
            )
        return minutes

    def _arm(self, delay_seconds: float) -> None:
        # Caller holds _state_lock
        self._generation += 1
        timer = self._timer_factory(
            delay_seconds, self._on_timer, args=(self._generation,)
        )
        timer.daemon = True
        timer.start()
        self._timer = timer

    def _cancel_timer(self) -> None:
        # Caller holds _state_lock
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._generation += 1

    def _on_timer(self, generation: int) -> None:
        with self._state_lock:
            if not self._running or generation != self._generation:
                return
            self._startup_pending = False
            self._arm(self._interval_minutes * 60)

        self._execute(debug=False, scheduled=True)

    def _execute(self, debug: bool, scheduled: bool) -> Optional[SyncResult]:
        if not self._run_lock.acquire(blocking=False):
            if scheduled:
                logger.warning("Scheduled sync skipped: previous run still in progress")
                return None
            logger.warning("Manual sync rejected: a run is already in progress")
            return SyncResult(success=False, error=RUN_IN_PROGRESS)

        try:
            started_at = self._clock().strftime(ISO_UTC_FORMAT)
            with self._state_lock:
                self._last_sync = started_at

            try:
                result = self._run_sync(debug)
            except Exception as e:
                logger.error(
                    f"Sync run raised: {e}",
                    extra={'error_type': type(e).__name__},
                    exc_info=True
                )
                result = SyncResult(
                    success=False, error=str(e), started_at=started_at
                )

            with self._state_lock:
                self._last_result = result
            return result
        finally:
            self._run_lock.release()
