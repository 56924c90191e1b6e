import json

import pytest

from protocol.channel_message import ChannelMessage, ChannelResult
from protocol.errors import AuthorizationDenied, ErrorCode, PlacementFailed, error_for_code
from protocol.event_codec import decode_event, encode_event
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


def test_sample_record_layout():
    sample = Sample(timestamp=1000, kind=SampleKind.HEART_RATE, value=72.5)
    assert encode_event(sample) == {"timestamp": 1000, "kind": "heart_rate", "value": 72.5}


def test_legacy_sample_layout():
    sample = Sample(timestamp=1000, kind=SampleKind.HEART_RATE_VARIABILITY, value=48.0)
    assert encode_event(sample, "legacy") == {"timestamp": 1000, "hrv": 48.0}
    assert decode_event({"timestamp": 1000, "hrv": 48.0}) == sample


def test_error_layouts():
    record = AuthorizationDenied("Sensor authorization failed").to_record()

    assert encode_event(record) == {"code": "AUTHORIZATION_DENIED", "message": "Sensor authorization failed"}
    assert encode_event(record, "legacy")["details"] is None
    assert decode_event(encode_event(record)) == record


def test_status_record():
    assert encode_event(StatusRecord("streaming")) == {"status": "streaming"}


def test_surface_event_is_json_ready():
    surface = Surface(id="plane-1", center=Point3(0.0, 0.0, -1.0), extent=(1.0, 0.5))
    anchor = AnchorHandle(id="anchor-1", surface_id="plane-1", position=Point3(0.1, 0.0, -1.0))
    event = SurfaceEvent(event="anchor_placed", surface_id="plane-1", anchor=anchor)

    data = encode_event(event)

    assert json.loads(json.dumps(data)) == {
        "event": "anchor_placed",
        "surface_id": "plane-1",
        "anchor": {"id": "anchor-1", "surface_id": "plane-1", "position": [0.1, 0.0, -1.0]},
    }
    assert decode_event(encode_event(SurfaceEvent(event="surface_detected", surface=surface))).surface == surface


def test_unknown_format_and_payload():
    with pytest.raises(ValueError):
        encode_event(StatusRecord("stopped"), "xml")
    with pytest.raises(ValueError):
        decode_event({"foo": 1})


def test_error_for_code():
    error = error_for_code(ErrorCode.PLACEMENT_FAILED, "anchor lost")
    assert isinstance(error, PlacementFailed)
    assert error.to_record() == ErrorRecord(ErrorCode.PLACEMENT_FAILED, "anchor lost")


def test_channel_envelopes():
    message = ChannelMessage.from_dict({"command": "place_object", "arguments": {"surface": "p"}})
    assert message.correlation
    assert ChannelMessage.from_dict(message.to_dict()) == message

    failure = ChannelResult.failure("c-9", PlacementFailed())
    assert failure.to_dict() == {
        "correlation": "c-9",
        "ok": False,
        "error": {"code": "PLACEMENT_FAILED", "message": "Anchor could not be created"},
    }
