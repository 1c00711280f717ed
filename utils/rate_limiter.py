"""Token bucket rate limiter."""
import time
import threading


class RateLimiter:
    """Token bucket rate limiter, thread-safe.

    Workers share one limiter per data source, so the ingestion thread and a
    manual `signalengine ingest` in the same process draw from one budget.
    """

    def __init__(self, calls_per_minute, clock=time.monotonic, sleep=time.sleep):
        if calls_per_minute <= 0:
            raise ValueError("calls_per_minute must be positive")
        self.rate = calls_per_minute / 60.0  # tokens per second
        self.max_tokens = calls_per_minute
        self.tokens = float(calls_per_minute)
        self._clock = clock
        self._sleep = sleep
        self.last_time = clock()
        self._lock = threading.Lock()

    def wait(self):
        """Block until a token is available. Returns seconds spent waiting."""
        with self._lock:
            now = self._clock()
            elapsed = now - self.last_time
            self.tokens = min(self.max_tokens, self.tokens + elapsed * self.rate)
            self.last_time = now

            if self.tokens < 1:
                sleep_time = (1 - self.tokens) / self.rate
                self._sleep(sleep_time)
                self.tokens = 0
                self.last_time = self._clock()
                return sleep_time
            self.tokens -= 1
            return 0.0
