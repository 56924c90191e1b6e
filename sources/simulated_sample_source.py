import itertools
import logging
import threading
import time
from typing import Callable, Optional, Sequence

import numpy as np

from protocol.errors import SourceUnavailable
from protocol.source_interfaces import (
    AuthorizationCallback,
    AuthorizationStatus,
    FailureCallback,
    SampleCallback,
    SampleSource,
    Subscription,
)
from protocol.types import Sample, SampleKind
from sources.timer_subscription import TimerSubscription

SAMPLE_INTERVAL_S = 1.0
HEART_RATE_RANGE = (60.0, 85.0)
HRV_RANGE = (40.0, 65.0)

_subscription_ids = itertools.count(1)


class SimulatedSampleSource(SampleSource):
    """Heart-rate / HRV simulator emitting one reading of each kind per tick"""

    def __init__(
        self,
        *,
        interval_s: float = SAMPLE_INTERVAL_S,
        heart_rate_range: Sequence[float] = HEART_RATE_RANGE,
        hrv_range: Sequence[float] = HRV_RANGE,
        authorization: str = "grant",
        authorization_delay_s: float = 0.2,
        fail_after_ticks: Optional[int] = None,
        available: bool = True,
        seed: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if authorization not in ("grant", "deny"):
            raise ValueError(f"authorization must be 'grant' or 'deny', got {authorization!r}")
        self.interval_s = interval_s
        self.heart_rate_range = tuple(heart_rate_range)
        self.hrv_range = tuple(hrv_range)
        self.authorization = authorization
        self.authorization_delay_s = authorization_delay_s
        self.fail_after_ticks = fail_after_ticks
        self.available = available
        self._rng = np.random.default_rng(seed)
        self._clock = clock
        self._status = AuthorizationStatus.NOT_DETERMINED
        self._subscriptions: list[TimerSubscription] = []
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, simulation: dict) -> "SimulatedSampleSource":
        return cls(
            interval_s=simulation.get("sample_interval_s", SAMPLE_INTERVAL_S),
            heart_rate_range=simulation.get("heart_rate_range", HEART_RATE_RANGE),
            hrv_range=simulation.get("hrv_range", HRV_RANGE),
            authorization=simulation.get("authorization", "grant"),
            authorization_delay_s=simulation.get("authorization_delay_s", 0.2),
            fail_after_ticks=simulation.get("fail_after_ticks"),
            seed=simulation.get("seed"),
        )

    def is_available(self) -> bool:
        return self.available

    def authorization_status(self) -> AuthorizationStatus:
        return self._status

    def request_authorization(self, on_result: AuthorizationCallback) -> None:
        timer = threading.Timer(self.authorization_delay_s, self._resolve_authorization, args=(on_result,))
        timer.daemon = True
        timer.start()

    def _resolve_authorization(self, on_result: AuthorizationCallback) -> None:
        granted = self.authorization == "grant"
        self._status = AuthorizationStatus.GRANTED if granted else AuthorizationStatus.DENIED
        self.logger.info(f"Simulated authorization {'granted' if granted else 'denied'}")
        on_result(granted, None if granted else "Sensor authorization failed")

    def subscribe(self, on_sample: SampleCallback, on_failure: FailureCallback) -> Subscription:
        if not self.available:
            raise SourceUnavailable("Simulated sensor is switched off")

        subscription = TimerSubscription(f"sample-source-{next(_subscription_ids)}")
        self._subscriptions.append(subscription)
        subscription.start(lambda sub: self._run(sub, on_sample, on_failure))
        return subscription

    def open_subscriptions(self) -> int:
        return sum(1 for sub in self._subscriptions if not sub.closed)

    def _next_samples(self) -> tuple[Sample, Sample]:
        ts = self._clock()
        hr = float(self._rng.uniform(*self.heart_rate_range))
        hrv = float(self._rng.uniform(*self.hrv_range))
        return (
            Sample(timestamp=ts, kind=SampleKind.HEART_RATE, value=hr),
            Sample(timestamp=ts, kind=SampleKind.HEART_RATE_VARIABILITY, value=hrv),
        )

    def _run(self, subscription: TimerSubscription, on_sample: SampleCallback,
             on_failure: FailureCallback) -> None:
        ticks = 0
        while not subscription.closed:
            for sample in self._next_samples():
                subscription.deliver(on_sample, sample)
            ticks += 1

            if self.fail_after_ticks is not None and ticks >= self.fail_after_ticks:
                self.logger.warning(f"⚠️ Simulated sensor failure after {ticks} ticks")
                subscription.deliver(on_failure, SourceUnavailable("Sensor stream interrupted"))
                subscription.close()
                break

            if subscription.wait(self.interval_s):
                break
