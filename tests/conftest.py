import asyncio
import threading
import uuid
from typing import Callable, List, Optional, Tuple

import pytest
import pytest_asyncio

from protocol.errors import BridgeError, PlacementFailed, SurfaceExpired
from protocol.source_interfaces import (
    AuthorizationStatus,
    SampleSource,
    Subscription,
    SurfaceSource,
)
from protocol.types import AnchorHandle, Point3, Sample, Surface
from stream.event_sink import EventSink


class FakeSubscription(Subscription):
    def __init__(self):
        self._closed = False

    def close(self) -> None:
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed


class FakeSampleSource(SampleSource):
    """Sample source driven by the test: authorization and samples are released on demand"""

    def __init__(self):
        self.status = AuthorizationStatus.NOT_DETERMINED
        self.available = True
        self.subscribe_error: Optional[Exception] = None
        self.samples_on_subscribe: List[Sample] = []
        self.auth_requests: List[Callable] = []
        self.subscriptions: List[Tuple[FakeSubscription, Callable, Callable]] = []

    def is_available(self) -> bool:
        return self.available

    def authorization_status(self) -> AuthorizationStatus:
        return self.status

    def request_authorization(self, on_result) -> None:
        self.auth_requests.append(on_result)

    def resolve_authorization(self, granted: bool, reason: Optional[str] = None, index: int = -1) -> None:
        self.status = AuthorizationStatus.GRANTED if granted else AuthorizationStatus.DENIED
        self.auth_requests[index](granted, reason)

    def subscribe(self, on_sample, on_failure) -> Subscription:
        if self.subscribe_error is not None:
            raise self.subscribe_error
        subscription = FakeSubscription()
        self.subscriptions.append((subscription, on_sample, on_failure))
        for sample in self.samples_on_subscribe:
            on_sample(sample)
        return subscription

    def open_subscriptions(self) -> int:
        return sum(1 for sub, _, _ in self.subscriptions if not sub.closed)

    def produce(self, sample: Sample, include_closed: bool = False) -> None:
        for sub, on_sample, _ in self.subscriptions:
            if include_closed or not sub.closed:
                on_sample(sample)

    def produce_from_thread(self, samples: List[Sample]) -> None:
        worker = threading.Thread(target=lambda: [self.produce(s) for s in samples])
        worker.start()
        worker.join()

    def fail(self, error: BridgeError) -> None:
        for sub, _, on_failure in self.subscriptions:
            if not sub.closed:
                on_failure(error)


class FakeSurfaceSource(SurfaceSource):
    """Surface source whose detections and anchor results are scripted by the test.

    ``anchor_mode``: ``immediate`` succeeds, ``fail`` reports PlacementFailed,
    ``expire`` reports SurfaceExpired, ``thread`` succeeds from a worker
    thread, ``hang`` never answers.
    """

    def __init__(self):
        self.available = True
        self.anchor_mode = "immediate"
        self.watchers: List[Tuple[FakeSubscription, Callable, Callable]] = []
        self.anchor_requests: List[Tuple[Surface, Point3]] = []

    def is_available(self) -> bool:
        return self.available

    def watch_surfaces(self, on_added, on_removed) -> Subscription:
        subscription = FakeSubscription()
        self.watchers.append((subscription, on_added, on_removed))
        return subscription

    def add_surface(self, surface: Surface) -> None:
        for sub, on_added, _ in self.watchers:
            if not sub.closed:
                on_added(surface)

    def remove_surface(self, surface_id: str) -> None:
        for sub, _, on_removed in self.watchers:
            if not sub.closed:
                on_removed(surface_id)

    def create_anchor(self, surface, point, on_result) -> None:
        self.anchor_requests.append((surface, point))
        anchor = AnchorHandle(id=f"anchor-{uuid.uuid4().hex[:6]}", surface_id=surface.id, position=point)
        if self.anchor_mode == "immediate":
            on_result(anchor, None)
        elif self.anchor_mode == "fail":
            on_result(None, PlacementFailed("tracking lost"))
        elif self.anchor_mode == "expire":
            on_result(None, SurfaceExpired("plane merged"))
        elif self.anchor_mode == "thread":
            threading.Thread(target=on_result, args=(anchor, None)).start()


async def _drain(cycles: int = 5) -> None:
    for _ in range(cycles):
        await asyncio.sleep(0)


@pytest.fixture
def drain():
    """Let the event loop run the callbacks handed to it"""
    return _drain


@pytest.fixture
def sample_source():
    return FakeSampleSource()


@pytest.fixture
def surface_source():
    return FakeSurfaceSource()


@pytest.fixture
def table_surface():
    return Surface(id="plane-table", center=Point3(0.2, 0.0, -0.5), extent=(0.8, 0.6))


@pytest_asyncio.fixture
async def sink():
    return EventSink("health", asyncio.get_running_loop())


@pytest_asyncio.fixture
async def ar_sink():
    return EventSink("ar", asyncio.get_running_loop())
