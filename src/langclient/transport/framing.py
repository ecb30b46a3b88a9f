"""LSP base protocol framing with Content-Length headers.

Header format:
    Content-Length: <length>\\r\\n
    [Content-Type: <type>]\\r\\n
    \\r\\n
    <payload>

The Content-Length header is required and gives the byte count of the
payload. Parsing is strict: any violation raises MalformedFrameError and the
stream is not resynchronised.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from langclient.errors import MalformedFrameError

CONTENT_LENGTH = "content-length"
HEADER_ENCODING = "ascii"
CRLF = b"\r\n"
HEADER_SEPARATOR = b"\r\n\r\n"

DEFAULT_MAX_MESSAGE_SIZE = 64 * 1024 * 1024


@dataclass
class Frame:
    """One length-prefixed unit of the wire protocol."""

    payload: bytes
    content_length: int
    headers: dict[str, str] = field(default_factory=dict)


def encode_frame(payload: bytes) -> bytes:
    """Prefix a payload with its Content-Length header block."""
    header = f"Content-Length: {len(payload)}\r\n\r\n".encode(HEADER_ENCODING)
    return header + payload


def parse_header(header_bytes: bytes) -> dict[str, str]:
    """Parse LSP headers from raw bytes.

    Args:
        header_bytes: Raw header bytes without the trailing blank line,
            e.g. b"Content-Length: 123\\r\\nContent-Type: ...".

    Returns:
        Header names (lowercased) mapped to their values.

    Raises:
        MalformedFrameError: If headers are malformed or Content-Length is
            missing or invalid.
    """
    headers: dict[str, str] = {}

    if not header_bytes:
        raise MalformedFrameError("Empty header block")

    try:
        header_text = header_bytes.decode(HEADER_ENCODING)
    except UnicodeDecodeError as e:
        raise MalformedFrameError(f"Header contains non-ASCII characters: {e}") from e

    for line in header_text.split("\r\n"):
        if not line:
            continue

        name, colon, value = line.partition(":")
        if not colon:
            raise MalformedFrameError(f"Malformed header line (no colon): {line!r}")

        name = name.strip()
        if not name:
            raise MalformedFrameError(f"Empty header name in line: {line!r}")

        headers[name.lower()] = value.strip()

    if CONTENT_LENGTH not in headers:
        raise MalformedFrameError("Missing required Content-Length header")

    content_length(headers)
    return headers


def content_length(headers: dict[str, str]) -> int:
    """Validated Content-Length of a parsed header block."""
    raw = headers[CONTENT_LENGTH]
    try:
        length = int(raw)
    except ValueError as e:
        raise MalformedFrameError(f"Invalid Content-Length value: {raw!r}") from e

    if length < 0:
        raise MalformedFrameError(f"Negative Content-Length: {length}")
    return length


def decode_frame(data: bytes) -> Frame:
    """Decode exactly one complete frame held in memory.

    Raises:
        MalformedFrameError: If the header is invalid or the body is shorter
            than declared.
    """
    end = data.find(HEADER_SEPARATOR)
    if end == -1:
        raise MalformedFrameError("Truncated header block")

    headers = parse_header(data[:end])
    length = content_length(headers)
    body = data[end + len(HEADER_SEPARATOR) :]
    if len(body) < length:
        raise MalformedFrameError(
            f"Incomplete message body: expected {length} bytes, got {len(body)}"
        )
    return Frame(payload=body[:length], content_length=length, headers=headers)


async def read_frame(
    reader: asyncio.StreamReader,
    *,
    max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
) -> Frame | None:
    """Read a single frame from the stream.

    Returns:
        The frame, or None on EOF at a frame boundary.

    Raises:
        MalformedFrameError: If framing is invalid or the stream ends mid-frame.
    """
    header_bytes = b""

    while True:
        try:
            line = await reader.readuntil(CRLF)
        except asyncio.IncompleteReadError as e:
            if header_bytes == b"" and e.partial == b"":
                return None  # Clean EOF at message boundary
            raise MalformedFrameError("Unexpected EOF while reading headers") from e
        except asyncio.LimitOverrunError as e:
            raise MalformedFrameError(f"Header line too long: {e}") from e

        if line == CRLF:
            break

        header_bytes += line

    if header_bytes.endswith(CRLF):
        header_bytes = header_bytes[:-2]

    headers = parse_header(header_bytes)
    length = content_length(headers)

    if length > max_message_size:
        raise MalformedFrameError(f"Message size {length} exceeds maximum {max_message_size}")

    try:
        payload = await reader.readexactly(length)
    except asyncio.IncompleteReadError as e:
        raise MalformedFrameError(
            f"Incomplete message body: expected {length} bytes, got {len(e.partial)}"
        ) from e

    return Frame(payload=payload, content_length=length, headers=headers)
