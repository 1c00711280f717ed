"""Tests for the drift-free tick scheduler."""
import threading
import pytest

from monitor.scheduler import FAILURE_ALERT_THRESHOLD, TickScheduler
from utils.cancellation import CancellationToken, CycleCancelled


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now


class SteppingToken(CancellationToken):
    """Token whose wait() advances a fake clock and cancels after `max_waits`."""

    def __init__(self, clock, max_waits):
        super().__init__()
        self.clock = clock
        self.max_waits = max_waits
        self.waits = []

    def wait(self, timeout=None):
        self.waits.append(round(timeout, 6))
        self.clock.now += timeout
        if len(self.waits) >= self.max_waits:
            self.cancel()
        return self.is_cancelled


def _scheduler(work, clock, token, interval=10, **kwargs):
    return TickScheduler("test", interval, work, cancel=token, clock=clock, **kwargs)


class TestTiming:
    def test_runs_immediately_then_every_interval(self):
        clock = FakeClock()
        token = SteppingToken(clock, max_waits=3)
        starts = []

        _scheduler(lambda cancel: starts.append(clock.now), clock, token).run()

        assert starts == [1000.0, 1010.0, 1020.0]

    def test_cycle_duration_does_not_accumulate_drift(self):
        clock = FakeClock()
        token = SteppingToken(clock, max_waits=3)
        starts = []

        def slow_work(cancel):
            starts.append(clock.now)
            clock.now += 3  # each cycle takes 3s of a 10s interval

        _scheduler(slow_work, clock, token).run()

        assert starts == [1000.0, 1010.0, 1020.0]
        assert token.waits == [7.0, 7.0, 7.0]

    def test_overrun_collapses_missed_ticks(self):
        clock = FakeClock()
        token = SteppingToken(clock, max_waits=3)
        starts = []

        def work(cancel):
            starts.append(clock.now)
            if len(starts) == 1:
                clock.now += 25  # overruns two deadlines

        _scheduler(work, clock, token).run()

        # Deadlines 1010 and 1020 collapse into one immediate run; grid stays on 1030.
        assert starts == [1000.0, 1025.0, 1030.0]
        assert token.waits == [0.0, 5.0, 10.0]


class TestLifecycle:
    def test_disabled_never_runs(self):
        calls = []
        scheduler = TickScheduler("test", 10, lambda cancel: calls.append(1), enabled=False)
        scheduler.run()
        assert calls == []
        assert scheduler.cycles_run == 0

    def test_cancelled_before_start_never_runs(self):
        token = CancellationToken()
        token.cancel()
        calls = []
        TickScheduler("test", 10, lambda cancel: calls.append(1), cancel=token).run()
        assert calls == []

    def test_cancel_during_cycle_stops_without_waiting(self):
        clock = FakeClock()
        token = SteppingToken(clock, max_waits=99)

        def work(cancel):
            cancel.cancel()

        scheduler = _scheduler(work, clock, token)
        scheduler.run()

        assert scheduler.cycles_run == 1
        assert token.waits == []

    def test_work_receives_token(self):
        clock = FakeClock()
        token = SteppingToken(clock, max_waits=1)
        seen = []
        _scheduler(lambda cancel: seen.append(cancel), clock, token).run()
        assert seen == [token]

    def test_invalid_interval_rejected(self):
        with pytest.raises(ValueError):
            TickScheduler("test", 0, lambda cancel: None)

    def test_background_thread_stops_on_cancel(self):
        token = CancellationToken()
        ran = threading.Event()

        def work(cancel):
            ran.set()

        scheduler = TickScheduler("test", 60, work, cancel=token)
        scheduler.start()
        assert ran.wait(5)
        assert scheduler.is_running
        token.cancel()
        scheduler.join(5)
        assert not scheduler.is_running


class TestFailures:
    def test_failing_cycle_keeps_ticking(self):
        clock = FakeClock()
        token = SteppingToken(clock, max_waits=3)
        calls = []

        def work(cancel):
            calls.append(1)
            raise RuntimeError("db locked")

        scheduler = _scheduler(work, clock, token)
        scheduler.run()

        assert len(calls) == 3
        assert scheduler.cycles_run == 3

    def test_consecutive_failures_log_critical(self, caplog):
        clock = FakeClock()
        token = SteppingToken(clock, max_waits=FAILURE_ALERT_THRESHOLD)

        def work(cancel):
            raise RuntimeError("boom")

        with caplog.at_level("ERROR", logger="signalengine.scheduler"):
            _scheduler(work, clock, token).run()

        assert any(r.levelname == "CRITICAL" for r in caplog.records)

    def test_cycle_cancelled_is_not_a_failure(self, caplog):
        clock = FakeClock()
        token = SteppingToken(clock, max_waits=2)

        def work(cancel):
            raise CycleCancelled()

        with caplog.at_level("ERROR", logger="signalengine.scheduler"):
            _scheduler(work, clock, token).run()

        assert not [r for r in caplog.records if r.levelname in ("ERROR", "CRITICAL")]

    def test_callbacks_receive_results(self):
        clock = FakeClock()
        token = SteppingToken(clock, max_waits=2)
        counter = iter(range(100))
        results = []

        scheduler = _scheduler(lambda cancel: next(counter), clock, token)
        scheduler.on_cycle(results.append)
        scheduler.run()

        assert results == [0, 1]
