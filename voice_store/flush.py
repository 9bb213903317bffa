# voice_store/flush.py
import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class DebouncedFlush:
    """Coalesces bursts of commits into one write to durable storage.

    ``schedule()`` re-arms a timer and returns immediately. The flush callback
    runs on the timer thread once ``delay`` seconds pass without another
    ``schedule()``. ``shutdown()`` cancels the timer and runs one last flush
    when anything is still pending, so a clean close never loses writes.

    The callback returns ``False`` when it could not flush yet (for example
    a transaction is still open); the flush is then re-armed.
    """

    def __init__(self, flush: Callable[[], bool], delay: float = 5.0):
        self._flush = flush
        self._delay = delay
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        # bumped on every schedule(); a flush only clears what it actually covered
        self._generation = 0
        self._flushed_generation = 0
        self._closed = False
        self.flush_count = 0

    @property
    def pending(self) -> bool:
        return self._generation != self._flushed_generation

    def schedule(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._generation += 1
            self._arm()

    def _arm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = threading.Timer(self._delay, self._run)
        self._timer.daemon = True
        self._timer.start()

    def _flush_generation(self) -> bool:
        with self._lock:
            generation = self._generation
        if generation == self._flushed_generation:
            return True
        try:
            done = self._flush()
        except Exception as e:
            logger.error(f"Flush to storage failed: {str(e)}")
            done = False
        if done:
            with self._lock:
                self._flushed_generation = max(self._flushed_generation, generation)
                self.flush_count += 1
        return done

    def _run(self) -> None:
        with self._lock:
            self._timer = None
            if self._closed:
                return
        done = self._flush_generation()
        with self._lock:
            if not self._closed and (not done or self.pending) and self._timer is None:
                self._arm()

    def flush_now(self) -> bool:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        return self._flush_generation()

    def shutdown(self) -> None:
        with self._lock:
            self._closed = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        if not self._flush_generation():
            logger.error("Final flush could not complete; most recent writes are not durable")
