"""JSON-RPC 2.0 message model carried inside frames."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from langclient.errors import MalformedFrameError

CONTENT_ENCODING = "utf-8"
JSONRPC_VERSION = "2.0"


class MessageKind(Enum):
    REQUEST = "request"
    RESPONSE = "response"
    NOTIFICATION = "notification"


@dataclass
class JsonRpcMessage:
    """Parsed JSON-RPC message.

    The kind is derived from which members are present: a method with an id
    is a request, a method without one is a notification, anything else with
    an id (or an error) is a response.
    """

    id: int | str | None = None
    method: str | None = None
    params: Any = None
    result: Any = None
    error: dict[str, Any] | None = None
    jsonrpc: str = JSONRPC_VERSION

    @property
    def kind(self) -> MessageKind:
        if self.method is not None:
            return MessageKind.NOTIFICATION if self.id is None else MessageKind.REQUEST
        return MessageKind.RESPONSE

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"jsonrpc": self.jsonrpc}
        if self.kind is MessageKind.RESPONSE:
            d["id"] = self.id
            if self.error is not None:
                d["error"] = self.error
            else:
                d["result"] = self.result
            return d
        if self.id is not None:
            d["id"] = self.id
        d["method"] = self.method
        if self.params is not None:
            d["params"] = self.params
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JsonRpcMessage:
        method = data.get("method")
        if method is not None and not isinstance(method, str):
            raise MalformedFrameError(f"Method must be a string, got {type(method).__name__}")
        if method is None and "id" not in data:
            raise MalformedFrameError("Message is neither a request, a notification nor a response")
        error = data.get("error")
        if error is not None and not isinstance(error, dict):
            raise MalformedFrameError("Response error must be an object")
        return cls(
            jsonrpc=data.get("jsonrpc", JSONRPC_VERSION),
            id=data.get("id"),
            method=method,
            params=data.get("params"),
            result=data.get("result"),
            error=error,
        )

    def encode(self) -> bytes:
        """Serialise to compact UTF-8 JSON.

        Raises:
            TypeError: If params or result are not JSON-serializable.
        """
        return json.dumps(self.to_dict(), separators=(",", ":")).encode(CONTENT_ENCODING)

    @classmethod
    def decode(cls, payload: bytes) -> JsonRpcMessage:
        """Parse a frame payload.

        Raises:
            MalformedFrameError: If the payload is not UTF-8 JSON describing a
                JSON-RPC message.
        """
        try:
            content = payload.decode(CONTENT_ENCODING)
        except UnicodeDecodeError as e:
            raise MalformedFrameError(f"Invalid UTF-8 in message body: {e}") from e

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise MalformedFrameError(f"Invalid JSON in message body: {e}") from e

        if not isinstance(data, dict):
            raise MalformedFrameError(
                f"JSON-RPC message must be an object, got {type(data).__name__}"
            )
        return cls.from_dict(data)

    def describe(self) -> str:
        """Short form for logs: "request initialize #1"."""
        label = self.method or ("error" if self.error is not None else "result")
        suffix = f" #{self.id}" if self.id is not None else ""
        return f"{self.kind.value} {label}{suffix}"
