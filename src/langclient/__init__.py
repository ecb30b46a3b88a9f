"""langclient - asyncio Language Server Protocol client."""

from langclient.client import LanguageClient, StartResult
from langclient.errors import (
    HandshakeError,
    LanguageClientError,
    MalformedFrameError,
    ProtocolStateError,
    RequestCancelledError,
    RequestTimeoutError,
    ResponseError,
    ServerCrashedError,
    SpawnError,
    TransportError,
    WriteFailedError,
)
from langclient.router import DocumentFilter, DocumentSelector, TextDocument
from langclient.session import ClientSession, SessionEvent, SessionEventKind
from langclient.state import ProtocolState
from langclient.version import __version__

__all__ = [
    "ClientSession",
    "DocumentFilter",
    "DocumentSelector",
    "HandshakeError",
    "LanguageClient",
    "LanguageClientError",
    "MalformedFrameError",
    "ProtocolState",
    "ProtocolStateError",
    "RequestCancelledError",
    "RequestTimeoutError",
    "ResponseError",
    "ServerCrashedError",
    "SessionEvent",
    "SessionEventKind",
    "SpawnError",
    "StartResult",
    "TextDocument",
    "TransportError",
    "WriteFailedError",
    "__version__",
]
