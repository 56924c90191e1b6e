import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from protocol.errors import BridgeError
from protocol.types import ErrorRecord


def new_correlation() -> str:
    return str(uuid.uuid4())


@dataclass
class ChannelMessage:
    """Control request envelope: a named command, its arguments and a correlation id"""
    command: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    correlation: str = field(default_factory=new_correlation)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChannelMessage":
        return cls(
            command=str(data.get("command", "")),
            arguments=dict(data.get("arguments") or {}),
            correlation=str(data.get("correlation") or new_correlation()),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "command": self.command,
            "arguments": self.arguments,
            "correlation": self.correlation,
        }


@dataclass
class ChannelResult:
    """Control response envelope carrying either a payload or a typed failure"""
    correlation: str
    payload: Any = None
    error: Optional[ErrorRecord] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, correlation: str, payload: Any = None) -> "ChannelResult":
        return cls(correlation=correlation, payload=payload)

    @classmethod
    def failure(cls, correlation: str, error: BridgeError) -> "ChannelResult":
        return cls(correlation=correlation, error=error.to_record())

    def to_dict(self) -> Dict[str, Any]:
        if self.error is None:
            return {"correlation": self.correlation, "ok": True, "payload": self.payload}
        return {
            "correlation": self.correlation,
            "ok": False,
            "error": {"code": self.error.code.value, "message": self.error.message},
        }
