"""Framed duplex byte stream to a language server."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Awaitable, Callable

from langclient.errors import TransportError, WriteFailedError
from langclient.logging import TRACE, get_logger
from langclient.transport.framing import DEFAULT_MAX_MESSAGE_SIZE, encode_frame, read_frame

_log = get_logger("transport")


class Transport:
    """Frames outbound payloads and unframes inbound ones.

    Has no notion of JSON-RPC: payloads are opaque bytes. One Transport
    serves exactly one process instance; its receive loop cannot be
    restarted.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        *,
        name: str = "server",
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._name = name
        self._max_message_size = max_message_size
        self._receiving = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed or self._writer.is_closing()

    async def send(self, payload: bytes) -> None:
        """Write one frame.

        The frame is handed to the stream before the first suspension point,
        so frames reach the stream in the order send() was called.

        Raises:
            WriteFailedError: If the stream is closed or the write fails.
        """
        if self.closed:
            raise WriteFailedError(f"Stream to {self._name} is closed")

        try:
            self._writer.write(encode_frame(payload))
            if _log.isEnabledFor(TRACE):
                _log.log(TRACE, "-> %s %s", self._name, payload.decode("utf-8", "replace"))
            await self._writer.drain()
        except (ConnectionError, OSError, RuntimeError) as e:
            raise WriteFailedError(f"Write to {self._name} failed: {e}") from e

    async def receive_loop(self) -> AsyncIterator[bytes]:
        """Yield inbound payloads until the stream closes.

        Raises:
            TransportError: If called a second time.
            MalformedFrameError: On invalid framing; the sequence ends there.
        """
        if self._receiving:
            raise TransportError("Receive loop is not restartable; create a new Transport")
        self._receiving = True

        while True:
            frame = await read_frame(self._reader, max_message_size=self._max_message_size)
            if frame is None:
                _log.debug("Stream from %s reached EOF", self._name)
                return
            if _log.isEnabledFor(TRACE):
                _log.log(TRACE, "<- %s %s", self._name, frame.payload.decode("utf-8", "replace"))
            yield frame.payload

    async def pump(self, deliver: Callable[[bytes], Awaitable[None]]) -> None:
        """Hand every inbound payload to ``deliver``, one at a time, in order."""
        async for payload in self.receive_loop():
            await deliver(payload)

    async def close(self) -> None:
        """Close the write side. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        with contextlib.suppress(ConnectionError, OSError):
            await self._writer.wait_closed()
