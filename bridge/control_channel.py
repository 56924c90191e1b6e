import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type, Union

from prometheus_client import Counter, Histogram
from pydantic import BaseModel, ValidationError, field_validator

from placement.placement_gate import PlacementGate
from protocol.channel_message import ChannelMessage, ChannelResult, new_correlation
from protocol.errors import (
    BridgeError,
    InvalidArguments,
    PlacementFailed,
    SourceUnavailable,
    Unimplemented,
)
from protocol.event_codec import encode_anchor
from protocol.types import Point3
from stream.stream_session import StreamSession

# Metrics
commands_total = Counter("bridge_commands_total", "Control commands dispatched", ["command", "outcome"])
dispatch_latency = Histogram("bridge_dispatch_latency_ms", "Control command latency",
                             buckets=[1, 5, 10, 50, 100, 500, 1000, 5000])

Handler = Callable[[Dict[str, Any]], Union[Any, Awaitable[Any]]]

DEFAULT_ALIASES = {
    "startHealthStream": "start_stream",
    "stopHealthStream": "stop_stream",
    "launchAR": "reset_placement",
}


class PlaceObjectArguments(BaseModel):
    surface: str
    point: Tuple[float, float, float]

    @field_validator("surface", mode="before")
    @classmethod
    def _surface_id(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return value.get("id")
        return value

    @field_validator("point", mode="before")
    @classmethod
    def _point_mapping(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return (value.get("x"), value.get("y"), value.get("z"))
        return value


@dataclass
class _Route:
    handler: Handler
    fallback_error: Type[BridgeError]
    is_async: bool


class ControlChannel:
    """Request/response transport routing named commands to their owners"""

    def __init__(self, session: StreamSession, gate: PlacementGate,
                 *, aliases: Optional[Dict[str, str]] = None):
        self.session = session
        self.gate = gate
        self.aliases = dict(DEFAULT_ALIASES if aliases is None else aliases)
        self._routes: Dict[str, _Route] = {}
        self.logger = logging.getLogger(__name__)

        self.register("start_stream", self._start_stream, SourceUnavailable)
        self.register("stop_stream", self._stop_stream, SourceUnavailable)
        self.register("place_object", self._place_object, PlacementFailed, is_async=True)
        self.register("reset_placement", self._reset_placement, PlacementFailed)

    def register(self, command: str, handler: Handler, fallback_error: Type[BridgeError],
                 is_async: bool = False) -> None:
        """Route a command to a handler; unexpected handler errors become ``fallback_error``"""
        self._routes[command] = _Route(handler, fallback_error, is_async)
        self.logger.debug(f"Registered command: {command}")

    def commands(self) -> list:
        return sorted(self._routes)

    def resolve(self, command: str) -> str:
        return self.aliases.get(command, command)

    async def handle(self, message: ChannelMessage) -> ChannelResult:
        return await self.dispatch(message.command, message.arguments, message.correlation)

    async def dispatch(self, command: str, arguments: Optional[Dict[str, Any]] = None,
                       correlation: Optional[str] = None) -> ChannelResult:
        correlation = correlation or new_correlation()
        name = self.resolve(command)
        route = self._routes.get(name)
        if route is None:
            commands_total.labels("unknown", "unimplemented").inc()
            self.logger.warning(f"Unknown command {command!r} ({correlation})")
            return ChannelResult.failure(correlation, Unimplemented(f"Unknown command: {command}"))

        start = time.perf_counter()
        try:
            if route.is_async:
                payload = await route.handler(arguments or {})
            else:
                payload = route.handler(arguments or {})
        except BridgeError as e:
            commands_total.labels(name, e.code.value.lower()).inc()
            self.logger.info(f"Command {name} ({correlation}) failed: {e.code.value} {e.message}")
            return ChannelResult.failure(correlation, e)
        except Exception as e:
            error = route.fallback_error(f"{name} failed: {e}")
            commands_total.labels(name, error.code.value.lower()).inc()
            self.logger.error(f"Command {name} ({correlation}) raised: {e}", exc_info=True)
            return ChannelResult.failure(correlation, error)
        finally:
            dispatch_latency.observe((time.perf_counter() - start) * 1000)

        commands_total.labels(name, "ok").inc()
        self.logger.debug(f"Command {name} ({correlation}) completed")
        return ChannelResult.success(correlation, payload)

    # ────────────── Command handlers ──────────────
    def _start_stream(self, arguments: Dict[str, Any]) -> None:
        self.session.start()

    def _stop_stream(self, arguments: Dict[str, Any]) -> None:
        self.session.stop()

    async def _place_object(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        try:
            parsed = PlaceObjectArguments.model_validate(arguments)
        except ValidationError as e:
            raise InvalidArguments("place_object expects a surface id and a point [x, y, z]",
                                   details=e.errors(include_url=False)) from e

        outcome = await self.gate.on_surface_selected(parsed.surface, Point3(*parsed.point))
        return {
            "placed": outcome.placed,
            "ignored": outcome.ignored,
            "anchor": encode_anchor(outcome.anchor) if outcome.anchor is not None else None,
        }

    def _reset_placement(self, arguments: Dict[str, Any]) -> None:
        self.gate.reset()
