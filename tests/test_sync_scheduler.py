"""Unit tests for SyncScheduler."""
import threading
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from processor.models import SyncResult
from scheduler.sync_scheduler import (
    RUN_IN_PROGRESS,
    IntervalValidationError,
    SyncScheduler,
)


class FakeTimer:
    """threading.Timer stand-in fired manually by the tests."""

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function(*self.args)


@pytest.fixture
def timers():
    return []


@pytest.fixture
def timer_factory(timers):
    def factory(*args, **kwargs):
        timer = FakeTimer(*args, **kwargs)
        timers.append(timer)
        return timer
    return factory


@pytest.fixture
def run_sync():
    return Mock(return_value=SyncResult(success=True, events_parsed=3))


def fixed_clock():
    return datetime(2025, 7, 5, 12, 0, tzinfo=timezone.utc)


def make_scheduler(run_sync, timer_factory, credentials_configured=True, **kwargs):
    return SyncScheduler(
        run_sync,
        credentials_configured=credentials_configured,
        timer_factory=timer_factory,
        clock=fixed_clock,
        **kwargs
    )


class TestSchedulerStart:
    """Test cases for start()."""

    def test_start_without_credentials_is_noop(self, run_sync, timer_factory, timers):
        """Test that start does nothing when credentials are missing."""
        scheduler = make_scheduler(run_sync, timer_factory, credentials_configured=False)

        assert scheduler.start() is False
        assert timers == []
        assert scheduler.status().running is False

    def test_first_run_after_startup_delay(self, run_sync, timer_factory, timers):
        """Test that the first run is delayed, then recurs at the interval."""
        scheduler = make_scheduler(run_sync, timer_factory, startup_delay_seconds=15)

        assert scheduler.start(interval_minutes=20) is True
        assert len(timers) == 1
        assert timers[0].interval == 15
        assert timers[0].started
        assert timers[0].daemon
        run_sync.assert_not_called()

        timers[0].fire()

        run_sync.assert_called_once_with(False)
        assert timers[1].interval == 20 * 60
        timers[1].fire()
        assert run_sync.call_count == 2
        assert timers[2].interval == 20 * 60

    def test_start_twice_does_not_add_timer(self, run_sync, timer_factory, timers):
        """Test that a second start keeps the existing schedule."""
        scheduler = make_scheduler(run_sync, timer_factory)
        scheduler.start()
        scheduler.start()

        assert len(timers) == 1

    def test_start_rejects_invalid_interval(self, run_sync, timer_factory, timers):
        """Test that start validates its interval argument."""
        scheduler = make_scheduler(run_sync, timer_factory)

        with pytest.raises(IntervalValidationError):
            scheduler.start(interval_minutes=1)
        assert timers == []

    def test_stop_cancels_timer(self, run_sync, timer_factory, timers):
        """Test that stop cancels the pending timer."""
        scheduler = make_scheduler(run_sync, timer_factory)
        scheduler.start()

        scheduler.stop()
        timers[0].fire()

        assert timers[0].cancelled
        run_sync.assert_not_called()
        assert scheduler.status().running is False


class TestSetInterval:
    """Test cases for set_interval()."""

    @pytest.mark.parametrize('minutes', [3, 4, 121, 200, 0, -5, 30.5, '30', None, True])
    def test_out_of_range_is_rejected(self, run_sync, timer_factory, timers, minutes):
        """Test rejected values leave the state unchanged."""
        scheduler = make_scheduler(run_sync, timer_factory, interval_minutes=15)
        scheduler.start()

        with pytest.raises(IntervalValidationError):
            scheduler.set_interval(minutes)

        assert scheduler.status().interval_minutes == 15
        assert len(timers) == 1
        assert not timers[0].cancelled

    @pytest.mark.parametrize('minutes', [5, 30, 120])
    def test_bounds_are_inclusive(self, run_sync, timer_factory, minutes):
        """Test the accepted range boundaries."""
        scheduler = make_scheduler(run_sync, timer_factory)
        scheduler.set_interval(minutes)
        assert scheduler.status().interval_minutes == minutes

    @pytest.mark.parametrize('minutes', [5.0, 30.0, 120.0])
    def test_whole_floats_are_accepted(self, run_sync, timer_factory, minutes):
        """Test that integral floats are applied as ints."""
        scheduler = make_scheduler(run_sync, timer_factory)

        assert scheduler.set_interval(minutes) == int(minutes)
        assert type(scheduler.status().interval_minutes) is int

    def test_new_interval_replaces_timer(self, run_sync, timer_factory, timers):
        """Test that the active recurring timer is cancelled and re-armed."""
        scheduler = make_scheduler(run_sync, timer_factory)
        scheduler.start()
        timers[0].fire()

        scheduler.set_interval(30)

        assert timers[1].cancelled
        assert timers[2].interval == 30 * 60

        timers[2].fire()
        assert run_sync.call_count == 2
        assert timers[3].interval == 30 * 60

    def test_stale_timer_does_not_run(self, run_sync, timer_factory, timers):
        """Test that a replaced timer firing late is ignored."""
        scheduler = make_scheduler(run_sync, timer_factory)
        scheduler.start()
        timers[0].fire()
        scheduler.set_interval(30)

        timers[1].fire()

        run_sync.assert_called_once()

    def test_interval_change_keeps_startup_run(self, run_sync, timer_factory, timers):
        """Test that changing the interval before the first run keeps its delay."""
        scheduler = make_scheduler(run_sync, timer_factory, startup_delay_seconds=15)
        scheduler.start()

        scheduler.set_interval(30)

        assert len(timers) == 1
        assert not timers[0].cancelled
        assert timers[0].interval == 15

        timers[0].fire()
        run_sync.assert_called_once_with(False)
        assert timers[1].interval == 30 * 60

    def test_set_interval_before_start_only_records(self, run_sync, timer_factory, timers):
        """Test that an idle scheduler records the interval for later."""
        scheduler = make_scheduler(run_sync, timer_factory)

        scheduler.set_interval(45)

        assert timers == []
        scheduler.start()
        timers[0].fire()
        assert timers[1].interval == 45 * 60


class TestRunsAndStatus:
    """Test cases for trigger_now() and status()."""

    def test_trigger_now_records_result(self, run_sync, timer_factory):
        """Test that a manual run updates last sync and last result."""
        scheduler = make_scheduler(run_sync, timer_factory)

        result = scheduler.trigger_now(debug=True)

        run_sync.assert_called_once_with(True)
        state = scheduler.status()
        assert state.last_result is result
        assert state.last_sync == '2025-07-05T12:00:00Z'
        assert state.run_in_progress is False

    def test_failed_run_is_recorded(self, timer_factory):
        """Test that an exception becomes a failed result in the status."""
        run_sync = Mock(side_effect=RuntimeError('portal down'))
        scheduler = make_scheduler(run_sync, timer_factory)

        result = scheduler.trigger_now()

        assert result.success is False
        assert result.error == 'portal down'
        assert scheduler.status().last_result is result
        assert scheduler.status().last_sync == '2025-07-05T12:00:00Z'

    def test_scheduled_loop_survives_failures(self, timer_factory, timers):
        """Test that the timer is re-armed even when the run fails."""
        run_sync = Mock(side_effect=RuntimeError('boom'))
        scheduler = make_scheduler(run_sync, timer_factory)
        scheduler.start()

        timers[0].fire()
        timers[1].fire()

        assert run_sync.call_count == 2
        assert len(timers) == 3
        assert scheduler.status().last_result.success is False

    def test_status_initial_state(self, run_sync, timer_factory):
        """Test status before any run."""
        state = make_scheduler(run_sync, timer_factory, interval_minutes=15).status()

        assert state.interval_minutes == 15
        assert state.last_sync is None
        assert state.last_result is None
        assert state.to_dict()['last_result'] is None


class TestRunOverlap:
    """Test cases for the single-run guard."""

    @pytest.fixture
    def blocking_run(self):
        started = threading.Event()
        release = threading.Event()
        result = SyncResult(success=True, events_parsed=1)

        def run(debug):
            started.set()
            release.wait(timeout=5)
            return result

        return run, started, release, result

    def test_manual_trigger_during_run_is_rejected(self, timer_factory, blocking_run):
        """Test that a second trigger does not overlap nor touch last result."""
        run, started, release, first_result = blocking_run
        scheduler = make_scheduler(run, timer_factory)

        worker = threading.Thread(target=scheduler.trigger_now)
        worker.start()
        assert started.wait(timeout=5)

        assert scheduler.status().run_in_progress is True
        second = scheduler.trigger_now()

        release.set()
        worker.join(timeout=5)

        assert second.success is False
        assert second.error == RUN_IN_PROGRESS
        assert scheduler.status().last_result is first_result

    def test_scheduled_tick_during_run_is_skipped(self, timer_factory, timers, blocking_run):
        """Test that a scheduled tick does not start a second run."""
        run, started, release, first_result = blocking_run
        calls = []

        def counting_run(debug):
            calls.append(debug)
            return run(debug)

        scheduler = make_scheduler(counting_run, timer_factory)
        scheduler.start()

        worker = threading.Thread(target=scheduler.trigger_now)
        worker.start()
        assert started.wait(timeout=5)

        timers[0].fire()

        release.set()
        worker.join(timeout=5)

        assert calls == [False]
        assert len(timers) == 2
        assert scheduler.status().last_result is first_result
