"""Encoding of bridge events into the JSON-ready maps pushed on the event streams.

Two layouts are supported:

* ``records`` - ``{timestamp, kind, value}`` for samples and ``{code, message}``
  for terminal errors.
* ``legacy`` - the maps the platform handlers historically sent: one key per
  reading (``hr`` / ``hrv``) next to the timestamp, and errors with ``details``.
"""
from typing import Any, Dict, Union

from protocol.errors import ErrorCode
from protocol.types import (
    AnchorHandle,
    ErrorRecord,
    Point3,
    Sample,
    SampleKind,
    StatusRecord,
    Surface,
    SurfaceEvent,
)

BridgeEvent = Union[Sample, ErrorRecord, StatusRecord, SurfaceEvent]

EVENT_FORMATS = ("records", "legacy")

_LEGACY_KEYS = {
    SampleKind.HEART_RATE: "hr",
    SampleKind.HEART_RATE_VARIABILITY: "hrv",
}
_KINDS_BY_LEGACY_KEY = {key: kind for kind, key in _LEGACY_KEYS.items()}


def encode_point(point: Point3) -> list:
    return point.as_list()


def encode_surface(surface: Surface) -> Dict[str, Any]:
    return {
        "id": surface.id,
        "center": encode_point(surface.center),
        "extent": list(surface.extent),
        "alignment": surface.alignment,
    }


def encode_anchor(anchor: AnchorHandle) -> Dict[str, Any]:
    return {
        "id": anchor.id,
        "surface_id": anchor.surface_id,
        "position": encode_point(anchor.position),
    }


def encode_event(event: BridgeEvent, event_format: str = "records") -> Dict[str, Any]:
    if event_format not in EVENT_FORMATS:
        raise ValueError(f"Unknown event format {event_format!r}")

    if isinstance(event, Sample):
        if event_format == "legacy":
            return {"timestamp": event.timestamp, _LEGACY_KEYS[event.kind]: event.value}
        return {"timestamp": event.timestamp, "kind": event.kind.value, "value": event.value}

    if isinstance(event, ErrorRecord):
        data: Dict[str, Any] = {"code": event.code.value, "message": event.message}
        if event_format == "legacy":
            data["details"] = event.details
        return data

    if isinstance(event, StatusRecord):
        return {"status": event.status}

    if isinstance(event, SurfaceEvent):
        data = {"event": event.event}
        if event.surface is not None:
            data["surface"] = encode_surface(event.surface)
        if event.surface_id is not None:
            data["surface_id"] = event.surface_id
        if event.anchor is not None:
            data["anchor"] = encode_anchor(event.anchor)
        return data

    raise TypeError(f"Cannot encode event of type {type(event).__name__}")


def decode_event(data: Dict[str, Any]) -> BridgeEvent:
    """Rebuild an event from either wire layout"""
    if "code" in data:
        return ErrorRecord(code=ErrorCode(data["code"]), message=data.get("message", ""),
                           details=data.get("details"))
    if "status" in data:
        return StatusRecord(status=data["status"])
    if "kind" in data:
        return Sample(timestamp=float(data["timestamp"]), kind=SampleKind(data["kind"]),
                      value=float(data["value"]))
    for key, kind in _KINDS_BY_LEGACY_KEY.items():
        if key in data:
            return Sample(timestamp=float(data["timestamp"]), kind=kind, value=float(data[key]))
    if "event" in data:
        surface = data.get("surface")
        anchor = data.get("anchor")
        return SurfaceEvent(
            event=data["event"],
            surface=Surface(
                id=surface["id"],
                center=Point3(*surface["center"]),
                extent=tuple(surface.get("extent", (0.0, 0.0))),
                alignment=surface.get("alignment", "horizontal"),
            ) if surface else None,
            surface_id=data.get("surface_id"),
            anchor=AnchorHandle(
                id=anchor["id"],
                surface_id=anchor["surface_id"],
                position=Point3(*anchor["position"]),
            ) if anchor else None,
        )
    raise ValueError(f"Unrecognised event payload: {data!r}")
