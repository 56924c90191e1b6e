import itertools
import logging
import threading
import uuid
from typing import Callable, Dict, Optional

import numpy as np

from protocol.errors import PlacementFailed, SurfaceExpired
from protocol.source_interfaces import AnchorCallback, Subscription, SurfaceSource
from protocol.types import AnchorHandle, Point3, Surface
from sources.timer_subscription import TimerSubscription

_watch_ids = itertools.count(1)


class SimulatedSurfaceSource(SurfaceSource):
    """Horizontal-plane detector that recognises a new surface every tick"""

    def __init__(
        self,
        *,
        surface_interval_s: float = 2.0,
        max_surfaces: int = 3,
        surface_lifetime_s: Optional[float] = None,
        anchor_delay_s: float = 0.05,
        fail_anchors: bool = False,
        seed: Optional[int] = None,
    ) -> None:
        self.surface_interval_s = surface_interval_s
        self.max_surfaces = max_surfaces
        self.surface_lifetime_s = surface_lifetime_s
        self.anchor_delay_s = anchor_delay_s
        self.fail_anchors = fail_anchors
        self._rng = np.random.default_rng(seed)
        self._surfaces: Dict[str, Surface] = {}
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, simulation: dict) -> "SimulatedSurfaceSource":
        return cls(
            surface_interval_s=simulation.get("surface_interval_s", 2.0),
            max_surfaces=simulation.get("max_surfaces", 3),
            surface_lifetime_s=simulation.get("surface_lifetime_s"),
            anchor_delay_s=simulation.get("anchor_delay_s", 0.05),
            seed=simulation.get("seed"),
        )

    def tracked_surfaces(self) -> list[Surface]:
        with self._lock:
            return list(self._surfaces.values())

    def _detect_surface(self) -> Surface:
        x, z = (float(v) for v in self._rng.uniform(-1.5, 1.5, size=2))
        width, depth = (float(v) for v in self._rng.uniform(0.4, 1.2, size=2))
        surface = Surface(id=f"plane-{uuid.uuid4().hex[:8]}", center=Point3(x, 0.0, z),
                          extent=(width, depth))
        with self._lock:
            self._surfaces[surface.id] = surface
        return surface

    def _forget_surface(self, surface_id: str) -> bool:
        with self._lock:
            return self._surfaces.pop(surface_id, None) is not None

    def watch_surfaces(self, on_added: Callable[[Surface], None],
                       on_removed: Callable[[str], None]) -> Subscription:
        subscription = TimerSubscription(f"surface-source-{next(_watch_ids)}")
        subscription.start(lambda sub: self._run(sub, on_added, on_removed))
        return subscription

    def _run(self, subscription: TimerSubscription, on_added: Callable[[Surface], None],
             on_removed: Callable[[str], None]) -> None:
        detected: list[tuple[float, str]] = []
        elapsed = 0.0
        while not subscription.wait(self.surface_interval_s):
            elapsed += self.surface_interval_s

            if self.surface_lifetime_s is not None:
                for born, surface_id in list(detected):
                    if elapsed - born >= self.surface_lifetime_s:
                        detected.remove((born, surface_id))
                        if self._forget_surface(surface_id):
                            subscription.deliver(on_removed, surface_id)

            if len(detected) < self.max_surfaces:
                surface = self._detect_surface()
                detected.append((elapsed, surface.id))
                self.logger.debug(f"Detected surface {surface.id} at {surface.center}")
                subscription.deliver(on_added, surface)

    def create_anchor(self, surface: Surface, point: Point3, on_result: AnchorCallback) -> None:
        timer = threading.Timer(self.anchor_delay_s, self._finish_anchor, args=(surface, point, on_result))
        timer.daemon = True
        timer.start()

    def _finish_anchor(self, surface: Surface, point: Point3, on_result: AnchorCallback) -> None:
        with self._lock:
            tracked = surface.id in self._surfaces
        if not tracked:
            on_result(None, SurfaceExpired(f"Surface {surface.id} is no longer tracked"))
            return
        if self.fail_anchors:
            on_result(None, PlacementFailed("Tracking quality too low to anchor"))
            return
        anchor = AnchorHandle(id=f"anchor-{uuid.uuid4().hex[:8]}", surface_id=surface.id, position=point)
        self.logger.info(f"✅ Anchor {anchor.id} created on {surface.id}")
        on_result(anchor, None)
