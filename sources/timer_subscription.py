import logging
import threading
from typing import Any, Callable

from protocol.source_interfaces import Subscription


class TimerSubscription(Subscription):
    """Subscription backed by a daemon thread ticking at a fixed interval.

    ``deliver`` and ``close`` share a lock, so once ``close()`` returns no
    callback is running or will run for this subscription.
    """

    def __init__(self, name: str):
        self.name = name
        self._stop_event = threading.Event()
        self._lock = threading.RLock()
        self._thread: threading.Thread | None = None
        self.logger = logging.getLogger(__name__)

    def start(self, target: Callable[["TimerSubscription"], None]) -> None:
        self._thread = threading.Thread(target=target, args=(self,), name=self.name, daemon=True)
        self._thread.start()

    def deliver(self, callback: Callable[..., Any], *args: Any) -> bool:
        with self._lock:
            if self._stop_event.is_set():
                return False
            try:
                callback(*args)
            except Exception as e:
                self.logger.error(f"Callback raised in {self.name}: {e}", exc_info=True)
            return True

    def wait(self, timeout: float) -> bool:
        """Sleep for one tick; True means the subscription was closed meanwhile"""
        return self._stop_event.wait(timeout)

    def close(self) -> None:
        with self._lock:
            if not self._stop_event.is_set():
                self._stop_event.set()
                self.logger.debug(f"Closed subscription {self.name}")

    @property
    def closed(self) -> bool:
        return self._stop_event.is_set()
