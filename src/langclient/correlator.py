"""Pairs outbound requests with inbound responses by id."""

from __future__ import annotations

import asyncio
import itertools
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from langclient.errors import (
    RequestCancelledError,
    RequestTimeoutError,
    ResponseError,
    TransportError,
)
from langclient.logging import get_logger
from langclient.transport.message import JsonRpcMessage, MessageKind

_log = get_logger("correlator")

CANCEL_METHOD = "$/cancelRequest"


@dataclass
class PendingRequest:
    """A request written to the server and still awaiting its response."""

    id: int
    method: str
    future: asyncio.Future[Any]
    submitted_at: float = field(default_factory=time.monotonic)
    timeout: float | None = None
    _timer: asyncio.TimerHandle | None = field(default=None, repr=False)

    @property
    def deadline(self) -> float | None:
        if self.timeout is None:
            return None
        return self.submitted_at + self.timeout

    def disarm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


class RequestCorrelator:
    """Allocates request ids, tracks pending requests and resolves them.

    Every future handed out resolves exactly once: with the result, a
    ResponseError, a RequestTimeoutError, or a RequestCancelledError.

    Args:
        send: Writes one encoded payload (Transport.send).
        route: Receives server-initiated requests and notifications.
        may_send: Optional gate consulted before best-effort cancel
            notifications; given the method name.
    """

    def __init__(
        self,
        send: Callable[[bytes], Awaitable[None]],
        route: Callable[[JsonRpcMessage], Awaitable[None]],
        *,
        may_send: Callable[[str], bool] | None = None,
    ) -> None:
        self._send = send
        self._route = route
        self._may_send = may_send
        self._ids = itertools.count(1)
        self._pending: dict[int, PendingRequest] = {}
        self._background: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> dict[int, PendingRequest]:
        """Snapshot of outstanding requests keyed by id."""
        return dict(self._pending)

    async def send_request(
        self,
        method: str,
        params: Any = None,
        *,
        timeout: float | None = None,
    ) -> asyncio.Future[Any]:
        """Write a request and return the future of its response.

        Raises:
            TransportError: If the request could not be written; nothing
                stays pending in that case.
            TypeError: If params are not JSON-serializable; no id is left
                pending.
        """
        request_id = next(self._ids)
        message = JsonRpcMessage(id=request_id, method=method, params=params)
        payload = message.encode()
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()
        pending = PendingRequest(id=request_id, method=method, future=future, timeout=timeout)
        self._pending[request_id] = pending
        future.add_done_callback(lambda f: self._on_future_done(request_id, f))

        if timeout is not None:
            pending._timer = loop.call_later(timeout, self._expire, request_id)

        try:
            await self._send(payload)
        except TransportError:
            self._pending.pop(request_id, None)
            pending.disarm()
            if not future.done():
                future.cancel()
            raise

        _log.debug("Sent %s", message.describe())
        return future

    async def request(
        self, method: str, params: Any = None, *, timeout: float | None = None
    ) -> Any:
        """Send a request and wait for its result."""
        future = await self.send_request(method, params, timeout=timeout)
        return await future

    async def send_notification(self, method: str, params: Any = None) -> None:
        """Fire-and-forget: no id, nothing pending."""
        await self._send(JsonRpcMessage(method=method, params=params).encode())
        _log.debug("Sent notification %s", method)

    async def send_response(
        self,
        request_id: int | str,
        result: Any = None,
        error: ResponseError | None = None,
    ) -> None:
        """Answer a server-initiated request."""
        message = JsonRpcMessage(
            id=request_id,
            result=result,
            error=error.to_payload() if error is not None else None,
        )
        await self._send(message.encode())

    async def on_message(self, payload: bytes) -> None:
        """Dispatch one inbound payload by message kind.

        Raises:
            MalformedFrameError: If the payload is not a JSON-RPC message.
        """
        message = JsonRpcMessage.decode(payload)

        if message.kind is not MessageKind.RESPONSE:
            await self._route(message)
            return

        pending = self._pending.pop(message.id, None) if isinstance(message.id, int) else None
        if pending is None:
            _log.warning("Dropping response with unknown id %r", message.id)
            return

        pending.disarm()
        if pending.future.done():
            return
        if message.error is not None:
            pending.future.set_exception(ResponseError.from_payload(message.error))
        else:
            pending.future.set_result(message.result)
        _log.debug(
            "Response to %s #%s after %.3fs",
            pending.method,
            pending.id,
            time.monotonic() - pending.submitted_at,
        )

    def cancel_all(self, reason: str) -> int:
        """Resolve every pending request with RequestCancelledError.

        Returns:
            Number of requests cancelled.
        """
        pending = list(self._pending.values())
        self._pending.clear()
        for request in pending:
            request.disarm()
            if not request.future.done():
                request.future.set_exception(RequestCancelledError(request.method, reason))
        if pending:
            _log.debug("Cancelled %d pending request(s): %s", len(pending), reason)
        return len(pending)

    async def drain_background(self) -> None:
        """Wait for in-flight best-effort cancel notifications."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def _expire(self, request_id: int) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None or pending.future.done():
            return
        pending._timer = None
        _log.warning(
            "Request %s #%s timed out after %ss", pending.method, request_id, pending.timeout
        )
        pending.future.set_exception(RequestTimeoutError(pending.method, pending.timeout or 0.0))
        self._cancel_on_server(request_id)

    def _on_future_done(self, request_id: int, future: asyncio.Future[Any]) -> None:
        if future.cancelled():
            # Abandoned by the caller
            pending = self._pending.pop(request_id, None)
            if pending is not None:
                pending.disarm()
                self._cancel_on_server(request_id)
            return
        # Mark the exception retrieved; the caller may never await this future
        future.exception()

    def _cancel_on_server(self, request_id: int) -> None:
        if self._may_send is not None and not self._may_send(CANCEL_METHOD):
            return
        task = asyncio.get_running_loop().create_task(self._send_cancel(request_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _send_cancel(self, request_id: int) -> None:
        try:
            await self.send_notification(CANCEL_METHOD, {"id": request_id})
        except TransportError as e:
            _log.debug("Could not send cancel for #%s: %s", request_id, e)
