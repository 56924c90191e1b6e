from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Optional

from protocol.errors import BridgeError
from protocol.types import AnchorHandle, Point3, Sample, Surface

AuthorizationCallback = Callable[[bool, Optional[str]], None]
SampleCallback = Callable[[Sample], None]
FailureCallback = Callable[[BridgeError], None]
AnchorCallback = Callable[[Optional[AnchorHandle], Optional[BridgeError]], None]


class AuthorizationStatus(Enum):
    NOT_DETERMINED = "not_determined"
    GRANTED = "granted"
    DENIED = "denied"


class Subscription(ABC):
    """Handle on an open source subscription.

    After ``close()`` returns the source must not invoke any callback
    registered through this subscription.
    """

    @abstractmethod
    def close(self) -> None:
        pass

    @property
    @abstractmethod
    def closed(self) -> bool:
        pass


class SampleSource(ABC):
    """Biometric capability living outside the bridge.

    Callbacks may arrive on any thread.
    """

    def is_available(self) -> bool:
        return True

    @abstractmethod
    def authorization_status(self) -> AuthorizationStatus:
        pass

    @abstractmethod
    def request_authorization(self, on_result: AuthorizationCallback) -> None:
        """Ask for read access; ``on_result(granted, reason)`` fires exactly once"""

    @abstractmethod
    def subscribe(self, on_sample: SampleCallback, on_failure: FailureCallback) -> Subscription:
        """Start producing samples; raises SourceUnavailable if the source cannot start"""


class SurfaceSource(ABC):
    """Spatial-tracking capability living outside the bridge.

    Callbacks may arrive on any thread.
    """

    def is_available(self) -> bool:
        return True

    @abstractmethod
    def watch_surfaces(self, on_added: Callable[[Surface], None],
                       on_removed: Callable[[str], None]) -> Subscription:
        pass

    @abstractmethod
    def create_anchor(self, surface: Surface, point: Point3, on_result: AnchorCallback) -> None:
        """Create a persistent anchor; ``on_result(anchor, error)`` fires exactly once"""
