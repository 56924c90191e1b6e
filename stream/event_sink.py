import asyncio
import logging
import time
from typing import Callable, Optional

from protocol.event_codec import BridgeEvent
from stream.stream_metrics import (
    sink_delivery_delay_ms,
    sink_events_delivered,
    sink_events_dropped,
    sink_listener_errors,
)

Listener = Callable[[BridgeEvent], None]


class EventSink:
    """Push transport delivering events to at most one attached listener.

    ``emit`` may be called from any thread. Delivery always happens on the
    event loop passed in (the delivery context). An event is delivered only to
    the listener that was attached when it was emitted; events emitted while
    no listener is attached are dropped, never buffered.

    ``attach`` and ``detach`` must be called on the delivery context.
    """

    def __init__(self, name: str, loop: asyncio.AbstractEventLoop):
        self.name = name
        self._loop = loop
        self._listener: Optional[Listener] = None
        self._epoch = 0
        self.delivered = 0
        self.dropped = 0
        self.errors = 0
        self.logger = logging.getLogger(__name__)

    @property
    def has_listener(self) -> bool:
        return self._listener is not None

    def attach(self, listener: Listener) -> None:
        if self._listener is not None:
            self.logger.info(f"Replacing listener on sink {self.name}")
        self._listener = listener
        self._epoch += 1
        self.logger.debug(f"Listener attached to sink {self.name} (epoch {self._epoch})")

    def detach(self, listener: Optional[Listener] = None) -> bool:
        """Detach the current listener, or only ``listener`` if it is still the current one"""
        if self._listener is None:
            return False
        if listener is not None and listener != self._listener:
            self.logger.debug(f"Ignoring detach of a replaced listener on sink {self.name}")
            return False
        self._listener = None
        self._epoch += 1
        self.logger.debug(f"Listener detached from sink {self.name} (epoch {self._epoch})")
        return True

    def emit(self, event: BridgeEvent, guard: Optional[Callable[[], bool]] = None) -> None:
        """Hand an event to the delivery context.

        ``guard`` runs on the delivery context right before delivery; a false
        result drops the event.
        """
        epoch = self._epoch
        queued_at = time.perf_counter()
        try:
            self._loop.call_soon_threadsafe(self._deliver, event, epoch, guard, queued_at)
        except RuntimeError:
            # Delivery context already closed
            sink_events_dropped.labels(self.name).inc()
            self.logger.debug(f"Sink {self.name} dropped event after its loop closed")

    def _deliver(self, event: BridgeEvent, epoch: int, guard: Optional[Callable[[], bool]],
                 queued_at: float) -> None:
        listener = self._listener
        if listener is None or epoch != self._epoch or (guard is not None and not guard()):
            self.dropped += 1
            sink_events_dropped.labels(self.name).inc()
            return

        sink_delivery_delay_ms.observe((time.perf_counter() - queued_at) * 1000)
        try:
            listener(event)
        except Exception as e:
            self.errors += 1
            sink_listener_errors.labels(self.name).inc()
            self.logger.error(f"Listener on sink {self.name} raised: {e}", exc_info=True)
            return

        self.delivered += 1
        sink_events_delivered.labels(self.name).inc()
