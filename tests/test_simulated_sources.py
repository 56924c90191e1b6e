import threading
import time

import pytest

from protocol.errors import ErrorCode, PlacementFailed, SourceUnavailable, SurfaceExpired
from protocol.source_interfaces import AuthorizationStatus
from protocol.types import Point3, SampleKind, Surface
from sources.simulated_sample_source import SimulatedSampleSource
from sources.simulated_surface_source import SimulatedSurfaceSource


def wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class TestSimulatedSampleSource:

    def test_authorization_grant(self):
        source = SimulatedSampleSource(authorization_delay_s=0.01)
        results = []
        done = threading.Event()

        source.request_authorization(lambda granted, reason: (results.append((granted, reason)), done.set()))

        assert done.wait(2.0)
        assert results == [(True, None)]
        assert source.authorization_status() is AuthorizationStatus.GRANTED

    def test_authorization_denied(self):
        source = SimulatedSampleSource(authorization="deny", authorization_delay_s=0.01)
        results = []
        done = threading.Event()

        source.request_authorization(lambda granted, reason: (results.append((granted, reason)), done.set()))

        assert done.wait(2.0)
        assert results == [(False, "Sensor authorization failed")]
        assert source.authorization_status() is AuthorizationStatus.DENIED

    def test_invalid_authorization_mode(self):
        with pytest.raises(ValueError):
            SimulatedSampleSource(authorization="maybe")

    def test_samples_stay_in_range(self):
        source = SimulatedSampleSource(interval_s=0.01, seed=3)
        samples = []
        subscription = source.subscribe(samples.append, lambda error: None)
        try:
            assert wait_for(lambda: len(samples) >= 10)
        finally:
            subscription.close()

        heart_rates = [s.value for s in samples if s.kind is SampleKind.HEART_RATE]
        variability = [s.value for s in samples if s.kind is SampleKind.HEART_RATE_VARIABILITY]
        assert heart_rates and variability
        assert all(60.0 <= v < 85.0 for v in heart_rates)
        assert all(40.0 <= v < 65.0 for v in variability)
        assert samples[0].timestamp == samples[1].timestamp

    def test_no_samples_after_close(self):
        source = SimulatedSampleSource(interval_s=0.01)
        samples = []
        subscription = source.subscribe(samples.append, lambda error: None)
        assert wait_for(lambda: len(samples) >= 2)

        subscription.close()
        count = len(samples)
        time.sleep(0.05)

        assert len(samples) == count
        assert source.open_subscriptions() == 0

    def test_failure_after_ticks(self):
        source = SimulatedSampleSource(interval_s=0.01, fail_after_ticks=2)
        failures = []
        subscription = source.subscribe(lambda sample: None, failures.append)

        assert wait_for(lambda: subscription.closed)
        assert [f.code for f in failures] == [ErrorCode.SOURCE_UNAVAILABLE]

    def test_unavailable_source_refuses_subscribe(self):
        source = SimulatedSampleSource(available=False)
        with pytest.raises(SourceUnavailable):
            source.subscribe(lambda sample: None, lambda error: None)

    def test_from_config(self):
        source = SimulatedSampleSource.from_config({"sample_interval_s": 0.5, "heart_rate_range": [50, 55]})
        assert source.interval_s == 0.5
        assert source.heart_rate_range == (50, 55)


class TestSimulatedSurfaceSource:

    def test_detects_up_to_max_surfaces(self):
        source = SimulatedSurfaceSource(surface_interval_s=0.01, max_surfaces=2, seed=1)
        added = []
        watch = source.watch_surfaces(added.append, lambda surface_id: None)
        try:
            assert wait_for(lambda: len(added) >= 2)
            time.sleep(0.05)
        finally:
            watch.close()

        assert len(added) == 2
        assert all(s.alignment == "horizontal" and s.center.y == 0.0 for s in added)
        assert {s.id for s in source.tracked_surfaces()} == {s.id for s in added}

    def test_surfaces_expire(self):
        source = SimulatedSurfaceSource(surface_interval_s=0.01, max_surfaces=1, surface_lifetime_s=0.02)
        removed = []
        watch = source.watch_surfaces(lambda surface: None, removed.append)
        try:
            assert wait_for(lambda: len(removed) >= 1)
        finally:
            watch.close()

    def _anchor(self, source, surface):
        results = []
        done = threading.Event()
        source.create_anchor(surface, Point3(0.0, 0.0, 0.0),
                             lambda anchor, error: (results.append((anchor, error)), done.set()))
        assert done.wait(2.0)
        return results[0]

    def test_anchor_on_tracked_surface(self):
        source = SimulatedSurfaceSource(anchor_delay_s=0.0)
        surface = source._detect_surface()

        anchor, error = self._anchor(source, surface)

        assert error is None
        assert anchor.surface_id == surface.id
        assert anchor.position == Point3(0.0, 0.0, 0.0)

    def test_anchor_on_untracked_surface(self):
        source = SimulatedSurfaceSource(anchor_delay_s=0.0)
        anchor, error = self._anchor(source, Surface(id="plane-none", center=Point3(0.0, 0.0, 0.0)))

        assert anchor is None
        assert isinstance(error, SurfaceExpired)

    def test_anchor_failure_mode(self):
        source = SimulatedSurfaceSource(anchor_delay_s=0.0, fail_anchors=True)
        anchor, error = self._anchor(source, source._detect_surface())

        assert anchor is None
        assert isinstance(error, PlacementFailed)
