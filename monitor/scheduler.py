"""Drift-free periodic scheduler for one pipeline stage."""
import logging
import threading
import time

from utils.cancellation import CancellationToken, CycleCancelled

logger = logging.getLogger("signalengine.scheduler")

FAILURE_ALERT_THRESHOLD = 5


class TickScheduler:
    """Run `work(cancel)` once immediately, then once per interval.

    Deadlines are absolute on a monotonic clock: the wait after a cycle is
    whatever is left of the interval, so a slow cycle does not push later
    ticks back. If a cycle overruns one or more deadlines, the missed ticks
    collapse into a single immediate run and the schedule stays on its grid.

    Cancellation interrupts the wait. A running cycle is never killed; it
    sees the same token and may stop at its next item boundary.
    """

    def __init__(self, name, interval_seconds, work, enabled=True, cancel=None, clock=time.monotonic):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.name = name
        self.interval = float(interval_seconds)
        self.work = work
        self.enabled = enabled
        self.cancel = cancel or CancellationToken()
        self.clock = clock
        self.cycles_run = 0
        self._callbacks = []
        self._consecutive_failures = 0
        self._thread = None

    def on_cycle(self, callback):
        """Register callback called with each completed cycle's result."""
        self._callbacks.append(callback)

    def run(self):
        """Block until cancelled. Returns immediately when disabled."""
        if not self.enabled:
            logger.info(f"{self.name} scheduler disabled, not starting")
            return

        logger.info(f"{self.name} scheduler started (every {self.interval:g}s)")
        next_deadline = self.clock()
        while not self.cancel.is_cancelled:
            self._run_cycle()
            if self.cancel.is_cancelled:
                break

            next_deadline += self.interval
            now = self.clock()
            if now > next_deadline:
                missed = int((now - next_deadline) // self.interval)
                if missed:
                    logger.warning(f"{self.name} cycle overran {missed + 1} interval(s)")
                next_deadline += missed * self.interval

            if self.cancel.wait(max(0.0, next_deadline - self.clock())):
                break
        logger.info(f"{self.name} scheduler stopped")

    def start(self):
        """Run the scheduler on a background daemon thread."""
        if self._thread and self._thread.is_alive():
            return self._thread
        self._thread = threading.Thread(target=self.run, name=f"{self.name}-scheduler", daemon=True)
        self._thread.start()
        return self._thread

    def join(self, timeout=None):
        if self._thread:
            self._thread.join(timeout)
            if not self._thread.is_alive():
                self._thread = None

    @property
    def is_running(self):
        return self._thread is not None and self._thread.is_alive()

    def _run_cycle(self):
        try:
            result = self.work(self.cancel)
        except CycleCancelled:
            logger.info(f"{self.name} cycle cancelled due to shutdown")
            return
        except Exception as e:
            self._consecutive_failures += 1
            logger.error(
                f"{self.name} cycle failed ({self._consecutive_failures} consecutive): {e}. "
                f"Will retry on next interval.",
                exc_info=True,
            )
            if self._consecutive_failures >= FAILURE_ALERT_THRESHOLD:
                logger.critical(f"{FAILURE_ALERT_THRESHOLD}+ consecutive {self.name} failures!")
            return
        finally:
            self.cycles_run += 1

        self._consecutive_failures = 0
        for cb in self._callbacks:
            try:
                cb(result)
            except Exception as e:
                logger.warning(f"{self.name} callback error: {e}")
