"""Transport layer: Content-Length framing and JSON-RPC messages."""

from langclient.transport.framing import (
    Frame,
    decode_frame,
    encode_frame,
    parse_header,
    read_frame,
)
from langclient.transport.message import JsonRpcMessage, MessageKind
from langclient.transport.stream import Transport

__all__ = [
    "Frame",
    "JsonRpcMessage",
    "MessageKind",
    "Transport",
    "decode_frame",
    "encode_frame",
    "parse_header",
    "read_frame",
]
