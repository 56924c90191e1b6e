from enum import Enum
from typing import Any, Optional


class ErrorCode(Enum):
    """Typed failure kinds that may cross the bridge"""
    AUTHORIZATION_DENIED = "AUTHORIZATION_DENIED"
    SOURCE_UNAVAILABLE = "SOURCE_UNAVAILABLE"
    SURFACE_EXPIRED = "SURFACE_EXPIRED"
    PLACEMENT_FAILED = "PLACEMENT_FAILED"
    UNIMPLEMENTED = "UNIMPLEMENTED"
    INVALID_ARGUMENTS = "INVALID_ARGUMENTS"


class BridgeError(Exception):
    """Base class for every failure reported across the bridge"""

    code: ErrorCode = ErrorCode.SOURCE_UNAVAILABLE
    default_message: str = "Bridge failure"

    def __init__(self, message: Optional[str] = None, details: Any = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_record(self):
        # Local import keeps protocol.types free of a dependency on this module
        from protocol.types import ErrorRecord
        return ErrorRecord(code=self.code, message=self.message, details=self.details)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.value}, message={self.message!r})"


class AuthorizationDenied(BridgeError):
    code = ErrorCode.AUTHORIZATION_DENIED
    default_message = "Access to the sensor data was declined"


class SourceUnavailable(BridgeError):
    code = ErrorCode.SOURCE_UNAVAILABLE
    default_message = "Sensor source is unavailable"


class SurfaceExpired(BridgeError):
    code = ErrorCode.SURFACE_EXPIRED
    default_message = "Surface is no longer tracked"


class PlacementFailed(BridgeError):
    code = ErrorCode.PLACEMENT_FAILED
    default_message = "Anchor could not be created"


class Unimplemented(BridgeError):
    code = ErrorCode.UNIMPLEMENTED
    default_message = "Command is not implemented"


class InvalidArguments(BridgeError):
    code = ErrorCode.INVALID_ARGUMENTS
    default_message = "Command arguments are malformed"


_ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (AuthorizationDenied, SourceUnavailable, SurfaceExpired,
                PlacementFailed, Unimplemented, InvalidArguments)
}


def error_for_code(code: ErrorCode, message: Optional[str] = None, details: Any = None) -> BridgeError:
    """Build the typed exception matching an error code"""
    return _ERRORS_BY_CODE[code](message, details)
