import asyncio
import logging
import weakref
from typing import Any, Callable, List, Optional

from protocol.errors import AuthorizationDenied, BridgeError, SourceUnavailable
from protocol.source_interfaces import AuthorizationStatus, SampleSource, Subscription
from protocol.types import Sample, StatusRecord
from stream.event_sink import EventSink
from stream.session_state_machine import SessionState, SessionStateMachine
from stream.stream_metrics import stream_authorizations, stream_error_events, stream_samples_forwarded


class StreamSession:
    """Owns the single subscription to a sample source.

    ``start`` and ``stop`` run on the delivery context and never block it:
    authorization is an asynchronous continuation carrying a ticket, and a
    continuation whose ticket was invalidated by ``stop`` is ignored. Samples
    are forwarded to the event sink as produced; delivery re-checks that the
    subscription they came from is still the active one.
    """

    def __init__(
        self,
        source: SampleSource,
        sink: EventSink,
        loop: asyncio.AbstractEventLoop,
        *,
        emit_status_events: bool = False,
        name: str = "health",
    ) -> None:
        self.source = source
        self.name = name
        self.emit_status_events = emit_status_events
        self._sink_ref = weakref.ref(sink)
        self._loop = loop
        self._machine = SessionStateMachine(name)
        self._subscription: Optional[Subscription] = None
        self._attempts = 0
        self._pending_ticket: Optional[int] = None
        self._active_ticket: Optional[int] = None
        self.logger = logging.getLogger(__name__)

    @property
    def state(self) -> SessionState:
        return self._machine.state

    @property
    def is_subscribed(self) -> bool:
        return self._subscription is not None and not self._subscription.closed

    def history(self) -> List[SessionState]:
        return self._machine.get_state_history()

    # ────────────── Control operations ──────────────
    def start(self) -> None:
        """Begin streaming; a no-op while already starting or active"""
        if self.state in (SessionState.STARTING, SessionState.ACTIVE):
            self.logger.debug(f"start ignored, session {self.name} is {self.state.value}")
            return
        if not self.source.is_available():
            raise SourceUnavailable()

        self._attempts += 1
        ticket = self._attempts
        self._machine.update(SessionState.STARTING)

        if self.source.authorization_status() is AuthorizationStatus.GRANTED:
            try:
                self._subscribe(ticket)
            except BridgeError:
                self._machine.update(SessionState.IDLE)
                raise
            return

        self._pending_ticket = ticket
        self.logger.info(f"Requesting sensor authorization (attempt {ticket})")
        try:
            self.source.request_authorization(
                lambda granted, reason: self._post(self._resolve_authorization, ticket, granted, reason)
            )
        except Exception as e:
            self._pending_ticket = None
            self._machine.update(SessionState.IDLE)
            raise SourceUnavailable(f"Authorization request failed: {e}") from e

    def stop(self) -> None:
        """Stop streaming; safe to call in any state"""
        state = self.state
        if state is SessionState.IDLE:
            self.logger.debug(f"stop ignored, session {self.name} is idle")
            return

        if state is SessionState.STARTING:
            self._pending_ticket = None
            self._machine.update(SessionState.IDLE)
            self.logger.info(f"Session {self.name} stopped before authorization resolved")
            self._emit_status("stopped")
            return

        if state is SessionState.ACTIVE:
            self._machine.update(SessionState.STOPPING)
            self._active_ticket = None
            self._release_subscription()
            self._machine.update(SessionState.IDLE)
            self.logger.info(f"Session {self.name} stopped")
            self._emit_status("stopped")

    # ────────────── Continuations (delivery context) ──────────────
    def _post(self, callback: Callable[..., Any], *args: Any) -> None:
        try:
            self._loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            self.logger.debug(f"Delivery context closed, dropping {callback.__name__}")

    def _resolve_authorization(self, ticket: int, granted: bool, reason: Optional[str]) -> None:
        if ticket != self._pending_ticket or self.state is not SessionState.STARTING:
            stream_authorizations.labels("stale").inc()
            self.logger.info(f"Ignoring stale authorization result for attempt {ticket}")
            return

        self._pending_ticket = None
        if not granted:
            stream_authorizations.labels("denied").inc()
            self._fail(AuthorizationDenied(reason))
            return

        stream_authorizations.labels("granted").inc()
        self._emit_status("authorized")
        try:
            self._subscribe(ticket)
        except BridgeError as e:
            self._fail(e)

    def _subscribe(self, ticket: int) -> None:
        # Sources may produce before subscribe() returns; delivery still waits for ACTIVE
        self._active_ticket = ticket
        try:
            subscription = self.source.subscribe(
                lambda sample: self._forward(ticket, sample),
                lambda error: self._post(self._handle_source_failure, ticket, error),
            )
        except BridgeError:
            self._active_ticket = None
            raise
        except Exception as e:
            self._active_ticket = None
            self.logger.error(f"Sample source failed to start: {e}", exc_info=True)
            raise SourceUnavailable(f"Sample source failed to start: {e}") from e

        self._subscription = subscription
        self._machine.update(SessionState.ACTIVE)
        self.logger.info(f"✅ Session {self.name} streaming (attempt {ticket})")
        self._emit_status("streaming")

    def _handle_source_failure(self, ticket: int, error: BridgeError) -> None:
        if ticket != self._active_ticket or self.state is not SessionState.ACTIVE:
            self.logger.debug(f"Ignoring failure from retired subscription {ticket}: {error!r}")
            return
        self._active_ticket = None
        self._release_subscription()
        self._fail(error)

    def _fail(self, error: BridgeError) -> None:
        self._emit_error(error)
        self._machine.update(SessionState.IDLE)

    # ────────────── Production side (any thread) ──────────────
    def _forward(self, ticket: int, sample: Sample) -> None:
        if ticket != self._active_ticket:
            return
        sink = self._sink_ref()
        if sink is None:
            return
        stream_samples_forwarded.inc()
        sink.emit(sample, guard=lambda: self._accepts(ticket))

    def _accepts(self, ticket: int) -> bool:
        return ticket == self._active_ticket and self.state is SessionState.ACTIVE

    # ────────────── Helpers ──────────────
    def _release_subscription(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is None:
            return
        try:
            subscription.close()
        except Exception as e:
            self.logger.error(f"Closing subscription for {self.name} failed: {e}", exc_info=True)

    def _emit_error(self, error: BridgeError) -> None:
        stream_error_events.labels(error.code.value).inc()
        self.logger.warning(f"⚠️ Session {self.name} error {error.code.value}: {error.message}")
        sink = self._sink_ref()
        if sink is not None:
            sink.emit(error.to_record())

    def _emit_status(self, status: str) -> None:
        if not self.emit_status_events:
            return
        sink = self._sink_ref()
        if sink is not None:
            sink.emit(StatusRecord(status=status))
