from __future__ import annotations

import logging
import threading
from typing import Callable, Generic, Optional, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


class LatestValueThrottle(Generic[T]):
    """Deliver at most one value per ``interval`` seconds, always the newest.

    Values offered between ticks overwrite each other; only the last one is
    handed to ``consumer``. Nothing is queued.
    """

    def __init__(self, consumer: Callable[[T], None], interval: float = 0.016) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.consumer = consumer
        self.interval = interval
        self._lock = threading.Lock()
        self._pending: Optional[T] = None
        self._has_pending = False
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None
        self.delivered = 0
        self.discarded = 0

    def offer(self, value: T) -> None:
        with self._lock:
            if self._has_pending:
                self.discarded += 1
            self._pending = value
            self._has_pending = True

    def flush(self) -> bool:
        """Deliver the pending value now. Returns False if nothing was pending."""
        with self._lock:
            if not self._has_pending:
                return False
            value = self._pending
            self._pending = None
            self._has_pending = False
        self.delivered += 1
        self.consumer(value)  # type: ignore[arg-type]
        return True

    def start(self) -> None:
        if self._thread is not None:
            logger.debug("Throttle already running")
            return
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._worker, daemon=True, name="throttle")
        self._thread.start()
        logger.debug("Throttle started (interval=%.3fs)", self.interval)

    def stop(self) -> None:
        if self._thread is None:
            return
        assert self._stop_event is not None
        self._stop_event.set()
        self._thread.join(timeout=1.0)
        self._thread = None
        self._stop_event = None
        logger.debug(
            "Throttle stopped (delivered=%d, discarded=%d)", self.delivered, self.discarded
        )

    def _worker(self) -> None:
        assert self._stop_event is not None
        while not self._stop_event.wait(self.interval):
            try:
                self.flush()
            except Exception:
                logger.exception("Throttled consumer failed")
