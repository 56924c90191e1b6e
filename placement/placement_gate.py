import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from prometheus_client import Counter, Gauge

from protocol.errors import BridgeError, PlacementFailed, SurfaceExpired
from protocol.source_interfaces import Subscription, SurfaceSource
from protocol.types import AnchorHandle, PlacementOutcome, Point3, Surface, SurfaceEvent
from stream.event_sink import EventSink

# Metrics
placement_attempts = Counter(
    "placement_attempts_total", "Selection events offered to the placement gate", ["outcome"]
)
tracked_surfaces = Gauge("placement_tracked_surfaces", "Surfaces currently known to the placement gate")


class GateState(Enum):
    """Arm cycle of the placement gate"""
    ARMED = "armed"
    PLACING = "placing"
    PLACED = "placed"


@dataclass(frozen=True)
class PlacementRequest:
    surface: Surface
    selection_point: Point3
    anchor: AnchorHandle


class PlacementGate:
    """Turns surface selections into exactly one anchored placement per arm cycle.

    Selections are serialized in arrival order. The first one that succeeds
    moves the gate to PLACED; later selections are ignored until ``reset``.
    A failed placement leaves the gate ARMED so a fresh selection can retry.
    """

    def __init__(
        self,
        source: SurfaceSource,
        loop: asyncio.AbstractEventLoop,
        *,
        events: Optional[EventSink] = None,
        placement_timeout_s: float = 5.0,
        auto_place_on_first_surface: bool = False,
    ) -> None:
        self.source = source
        self.events = events
        self.placement_timeout_s = placement_timeout_s
        self.auto_place_on_first_surface = auto_place_on_first_surface
        self._loop = loop
        self._state = GateState.ARMED
        self._cycle = 0
        self._request: Optional[PlacementRequest] = None
        self._surfaces: Dict[str, Surface] = {}
        self._lock = asyncio.Lock()
        self._watch: Optional[Subscription] = None
        self._auto_task: Optional[asyncio.Task] = None
        self.ignored_selections = 0
        self.logger = logging.getLogger(__name__)

    @property
    def state(self) -> GateState:
        return self._state

    @property
    def placed(self) -> bool:
        return self._state is GateState.PLACED

    @property
    def request(self) -> Optional[PlacementRequest]:
        return self._request

    def surfaces(self) -> List[Surface]:
        return list(self._surfaces.values())

    # ────────────── Lifecycle ──────────────
    def open(self) -> None:
        """Start receiving surface detections"""
        if self._watch is not None:
            return
        if not self.source.is_available():
            self.logger.warning("Surface source unavailable, placement gate stays closed")
            return
        self._watch = self.source.watch_surfaces(
            lambda surface: self._post(self._surface_added, surface),
            lambda surface_id: self._post(self._surface_removed, surface_id),
        )
        self.logger.info("Placement gate watching surfaces")

    def close(self) -> None:
        watch, self._watch = self._watch, None
        if watch is not None:
            watch.close()
        self._surfaces.clear()
        tracked_surfaces.set(0)
        if self._auto_task is not None and not self._auto_task.done():
            self._auto_task.cancel()
        self._auto_task = None

    def reset(self) -> None:
        """Re-arm the gate for a new placement"""
        self._cycle += 1
        self._state = GateState.ARMED
        self._request = None
        self.ignored_selections = 0
        self.logger.info(f"Placement gate re-armed (cycle {self._cycle})")

    # ────────────── Selection ──────────────
    async def on_surface_selected(self, surface_id: str, point: Point3) -> PlacementOutcome:
        async with self._lock:
            if self._state is GateState.PLACED:
                self.ignored_selections += 1
                placement_attempts.labels("ignored").inc()
                self.logger.debug(f"Selection on {surface_id} ignored, object already placed")
                return PlacementOutcome(ignored=True)

            surface = self._surfaces.get(surface_id)
            if surface is None:
                placement_attempts.labels("surface_expired").inc()
                raise SurfaceExpired(f"Surface {surface_id} is not tracked")

            cycle = self._cycle
            self._state = GateState.PLACING
            try:
                anchor = await self._create_anchor(surface, point)
            except BaseException as e:
                if cycle == self._cycle:
                    self._state = GateState.ARMED
                outcome = "surface_expired" if isinstance(e, SurfaceExpired) else "failed"
                placement_attempts.labels(outcome).inc()
                raise

            if cycle == self._cycle:
                self._state = GateState.PLACED
                self._request = PlacementRequest(surface=surface, selection_point=point, anchor=anchor)
            placement_attempts.labels("placed").inc()
            self.logger.info(f"✅ Object placed on {surface.id} at {point.as_list()} (anchor {anchor.id})")
            self._emit(SurfaceEvent(event="anchor_placed", surface_id=surface.id, anchor=anchor))
            return PlacementOutcome(anchor=anchor)

    async def _create_anchor(self, surface: Surface, point: Point3) -> AnchorHandle:
        future = self._loop.create_future()

        def on_result(anchor: Optional[AnchorHandle], error: Optional[BridgeError]) -> None:
            self._post(self._settle, future, anchor, error)

        try:
            self.source.create_anchor(surface, point, on_result)
        except BridgeError:
            raise
        except Exception as e:
            self.logger.error(f"Surface source rejected anchor request: {e}", exc_info=True)
            raise PlacementFailed(f"Anchor request failed: {e}") from e

        try:
            return await asyncio.wait_for(future, timeout=self.placement_timeout_s)
        except asyncio.TimeoutError:
            raise PlacementFailed(f"Anchor creation timed out after {self.placement_timeout_s}s")

    @staticmethod
    def _settle(future: asyncio.Future, anchor: Optional[AnchorHandle], error: Optional[BaseException]) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error if isinstance(error, BridgeError) else PlacementFailed(str(error)))
        elif anchor is None:
            future.set_exception(PlacementFailed("Surface source returned no anchor"))
        else:
            future.set_result(anchor)

    # ────────────── Surface tracking (delivery context) ──────────────
    def _post(self, callback: Callable[..., Any], *args: Any) -> None:
        try:
            self._loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            self.logger.debug(f"Delivery context closed, dropping {callback.__name__}")

    def _surface_added(self, surface: Surface) -> None:
        if self._watch is None:
            return
        self._surfaces[surface.id] = surface
        tracked_surfaces.set(len(self._surfaces))
        self._emit(SurfaceEvent(event="surface_detected", surface=surface))

        if (self.auto_place_on_first_surface and self._state is GateState.ARMED
                and self._auto_task is None):
            self._auto_task = self._loop.create_task(self._auto_place(surface))

    def _surface_removed(self, surface_id: str) -> None:
        if self._surfaces.pop(surface_id, None) is None:
            return
        tracked_surfaces.set(len(self._surfaces))
        self._emit(SurfaceEvent(event="surface_removed", surface_id=surface_id))

    async def _auto_place(self, surface: Surface) -> None:
        try:
            await self.on_surface_selected(surface.id, surface.center)
        except BridgeError as e:
            self.logger.warning(f"⚠️ Automatic placement on {surface.id} failed: {e.message}")
            self._emit(e.to_record())
        finally:
            self._auto_task = None

    def _emit(self, event) -> None:
        if self.events is not None:
            self.events.emit(event)
