"""Error taxonomy for the language client.

Session-level errors (SpawnError, TransportError, HandshakeError,
ServerCrashedError) move a session to its terminal CRASHED state and are
surfaced once. Per-request errors (RequestTimeoutError, RequestCancelledError,
ResponseError) only resolve the future of the request they belong to.
"""

from __future__ import annotations

from typing import Any


class LanguageClientError(Exception):
    """Base class for all language client errors."""


class SpawnError(LanguageClientError):
    """The server process could not be started.

    Raised when:
    - The server binary does not exist
    - The binary is not executable (permission denied)
    - The OS refuses to create the process for another reason

    Not retried automatically.
    """

    def __init__(self, command: str, reason: str) -> None:
        super().__init__(f"Failed to spawn {command!r}: {reason}")
        self.command = command
        self.reason = reason


class TransportError(LanguageClientError):
    """Failure of the framed byte stream to the server."""


class WriteFailedError(TransportError):
    """A frame could not be written because the stream is closed or broken."""


class MalformedFrameError(TransportError):
    """Inbound data violates the framing rules.

    Raised when:
    - Content-Length header is missing, not an integer, or negative
    - A header line has no colon or is not ASCII
    - The stream ends inside a header block or a body
    - The body is not a JSON object or not a JSON-RPC message
    """


class HandshakeError(LanguageClientError):
    """The initialize handshake failed or was abandoned."""


class ServerCrashedError(LanguageClientError):
    """The server exited or closed its stream without being asked to."""

    def __init__(self, message: str, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class ProtocolStateError(LanguageClientError):
    """An operation is not legal in the session's current protocol state."""


class RequestTimeoutError(LanguageClientError):
    """A request's deadline expired before its response arrived."""

    def __init__(self, method: str, timeout: float) -> None:
        super().__init__(f"Request {method!r} timed out after {timeout:g}s")
        self.method = method
        self.timeout = timeout


class RequestCancelledError(LanguageClientError):
    """A pending request was abandoned because the session stopped or crashed."""

    def __init__(self, method: str, reason: str) -> None:
        super().__init__(f"Request {method!r} cancelled: {reason}")
        self.method = method
        self.reason = reason


class ErrorCodes:
    """Standard JSON-RPC and LSP error codes."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    SERVER_NOT_INITIALIZED = -32002
    UNKNOWN_ERROR_CODE = -32001
    REQUEST_FAILED = -32803
    SERVER_CANCELLED = -32802
    CONTENT_MODIFIED = -32801
    REQUEST_CANCELLED = -32800


class ResponseError(LanguageClientError):
    """The server answered a request with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message
        self.data = data

    @classmethod
    def from_payload(cls, error: dict[str, Any]) -> ResponseError:
        """Build from the ``error`` member of a response."""
        return cls(
            code=int(error.get("code", ErrorCodes.UNKNOWN_ERROR_CODE)),
            message=str(error.get("message", "")),
            data=error.get("data"),
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            payload["data"] = self.data
        return payload
