from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple, TypedDict

from protocol.errors import ErrorCode


class SampleKind(Enum):
    HEART_RATE = "heart_rate"                          # beats/min
    HEART_RATE_VARIABILITY = "heart_rate_variability"  # milliseconds


@dataclass(frozen=True)
class Sample:
    """One timestamped biometric reading"""
    timestamp: float     # Unix epoch seconds
    kind: SampleKind
    value: float


@dataclass(frozen=True)
class ErrorRecord:
    """Terminal error pushed on an event stream or returned as a command failure"""
    code: ErrorCode
    message: str
    details: Any = None


@dataclass(frozen=True)
class StatusRecord:
    status: str          # authorized | streaming | stopped


@dataclass(frozen=True)
class Point3:
    x: float
    y: float
    z: float

    def as_list(self) -> list:
        return [self.x, self.y, self.z]


@dataclass(frozen=True)
class Surface:
    """A physical surface recognised by the spatial-tracking source"""
    id: str
    center: Point3
    extent: Tuple[float, float] = (0.0, 0.0)    # width (x), depth (z) in meters
    alignment: str = "horizontal"


@dataclass(frozen=True)
class AnchorHandle:
    id: str
    surface_id: str
    position: Point3


@dataclass(frozen=True)
class SurfaceEvent:
    event: str           # surface_detected | surface_removed | anchor_placed
    surface: Optional[Surface] = None
    surface_id: Optional[str] = None
    anchor: Optional[AnchorHandle] = None


# ────────────── Wire records ──────────────
class SampleMessage(TypedDict):
    timestamp: float     # Unix epoch time
    kind: str            # SampleKind value
    value: float         # bpm or ms


class ErrorMessage(TypedDict, total=False):
    code: str
    message: str
    details: Any


class SurfaceMessage(TypedDict, total=False):
    event: str
    surface_id: str
    surface: dict
    anchor: dict


@dataclass
class PlacementOutcome:
    """Result of one selection event offered to the placement gate"""
    anchor: Optional[AnchorHandle] = None
    ignored: bool = False

    @property
    def placed(self) -> bool:
        return self.anchor is not None
