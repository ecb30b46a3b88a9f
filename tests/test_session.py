"""Tests for ClientSession: handshake, routing, shutdown and crashes."""

from __future__ import annotations

import asyncio
import json
import logging

import pytest

from langclient.errors import (
    ErrorCodes,
    HandshakeError,
    MalformedFrameError,
    ProtocolStateError,
    RequestCancelledError,
    ResponseError,
    ServerCrashedError,
    SpawnError,
)
from langclient.router import TextDocument
from langclient.session import ClientSession, SessionEvent, SessionEventKind
from langclient.state import ProtocolState
from tests.utils import MemoryWriter, fast_timeouts, make_client_config, wait_until

S = ProtocolState

MAIN = TextDocument(uri="file:///work/main.vp", language_id="vapour", version=1, text="let x = 1")


class EventLog:
    def __init__(self, session: ClientSession) -> None:
        self.events: list[SessionEvent] = []
        session.on_event(self.events.append)

    def of(self, kind: SessionEventKind) -> list[SessionEvent]:
        return [e for e in self.events if e.kind is kind]

    def states(self) -> list[ProtocolState]:
        return [e.payload[1] for e in self.of(SessionEventKind.STATE_CHANGED)]


@pytest.fixture
def session(fake_server) -> ClientSession:
    return ClientSession(make_client_config(), root_path="/work")


async def _start_in_background(session: ClientSession) -> asyncio.Task:
    task = asyncio.create_task(session.start())
    await wait_until(lambda: session.state is S.INITIALIZING)
    return task


class TestHandshake:
    async def test_start_reaches_initialized(self, session, fake_server) -> None:
        log = EventLog(session)
        result = await session.start()

        assert session.state is S.INITIALIZED
        assert result.server_info is not None and result.server_info.name == "fake-server"
        assert session.server_capabilities == {"textDocumentSync": 1}
        assert fake_server.spawned[0][:2] == ("langsrv", ("-lsp",))
        assert fake_server.methods() == ["initialize", "initialized"]
        assert log.states() == [S.INITIALIZING, S.INITIALIZED]
        await session.stop()

    async def test_initialize_params(self, session, fake_server) -> None:
        await session.start()
        params = fake_server.params_of("initialize")[0]
        assert params["clientInfo"]["name"] == "langclient"
        assert params["rootUri"] == "file:///work"
        assert params["capabilities"]["workspace"]["configuration"] is True
        assert isinstance(params["processId"], int)
        await session.stop()

    async def test_initial_settings_are_pushed(self, fake_server) -> None:
        session = ClientSession(make_client_config(), settings={"when": ["open", "save"]})
        await session.start()
        assert fake_server.methods() == [
            "initialize",
            "initialized",
            "workspace/didChangeConfiguration",
        ]
        assert fake_server.params_of("workspace/didChangeConfiguration")[0] == {
            "settings": {"vapour": {"lsp": {"when": ["open", "save"]}}}
        }
        await session.stop()

    async def test_queued_settings_change_is_pushed_once(self, fake_server) -> None:
        session = ClientSession(make_client_config(), settings={"when": ["open"]})
        await session.router.on_configuration_changed("vapour.lsp", {"when": ["save"]})
        await session.start()
        assert fake_server.params_of("workspace/didChangeConfiguration") == [
            {"settings": {"vapour": {"lsp": {"when": ["save"]}}}}
        ]
        await session.stop()

    async def test_start_twice_is_refused(self, session) -> None:
        await session.start()
        with pytest.raises(ProtocolStateError):
            await session.start()
        await session.stop()

    async def test_error_response_crashes_session(self, session, fake_server) -> None:
        fake_server.errors["initialize"] = {"code": ErrorCodes.INTERNAL_ERROR, "message": "boom"}
        log = EventLog(session)

        with pytest.raises(HandshakeError, match="boom"):
            await session.start()

        assert session.state is S.CRASHED
        assert isinstance(session.failure, HandshakeError)
        assert log.of(SessionEventKind.CRASHED) == []
        assert fake_server.process.signals == ["terminate"]

    async def test_initialize_timeout(self, fake_server) -> None:
        fake_server.held.add("initialize")
        session = ClientSession(make_client_config(timeouts=fast_timeouts(initialize=0.05)))

        with pytest.raises(HandshakeError, match="timed out"):
            await session.start()
        assert session.state is S.CRASHED

    async def test_invalid_initialize_result(self, session, fake_server) -> None:
        fake_server.results["initialize"] = {"capabilities": "not-an-object"}
        with pytest.raises(HandshakeError, match="Invalid initialize result"):
            await session.start()
        assert session.state is S.CRASHED

    async def test_server_exit_during_handshake(self, session, fake_server) -> None:
        fake_server.held.add("initialize")
        task = await _start_in_background(session)

        fake_server.crash(2)

        with pytest.raises(HandshakeError, match="during handshake"):
            await task
        assert session.state is S.CRASHED

    async def test_spawn_failure(self) -> None:
        session = ClientSession(make_client_config("definitely-not-a-langsrv-binary"))
        log = EventLog(session)

        with pytest.raises(SpawnError):
            await session.start()

        assert session.state is S.CRASHED
        assert S.INITIALIZED not in log.states()


class TestStop:
    async def test_graceful_shutdown(self, session, fake_server) -> None:
        log = EventLog(session)
        await session.start()

        await session.stop()

        assert fake_server.methods()[-2:] == ["shutdown", "exit"]
        assert fake_server.process.returncode == 0
        assert fake_server.process.signals == []
        assert session.state is S.STOPPED
        assert log.states()[-2:] == [S.SHUTTING_DOWN, S.STOPPED]
        assert log.of(SessionEventKind.CRASHED) == []

    async def test_stop_is_idempotent(self, session, fake_server) -> None:
        await session.start()
        await asyncio.gather(session.stop(), session.stop())
        await session.stop()
        assert fake_server.methods().count("shutdown") == 1
        assert session.state is S.STOPPED

    async def test_stop_before_start_is_noop(self, session, fake_server) -> None:
        await session.stop()
        assert session.state is S.UNINITIALIZED
        assert fake_server.spawned == []

    async def test_unanswered_shutdown_still_exits(self, fake_server) -> None:
        fake_server.held.add("shutdown")
        session = ClientSession(make_client_config(timeouts=fast_timeouts(shutdown=0.05)))
        await session.start()

        await session.stop()

        assert fake_server.methods()[-1] == "exit"
        assert session.state is S.STOPPED

    async def test_server_ignoring_exit_is_terminated(self, session, fake_server) -> None:
        fake_server.exit_on_exit = False
        await session.start()

        await session.stop()

        assert fake_server.process.signals == ["terminate"]
        assert session.state is S.STOPPED

    async def test_stop_during_handshake(self, session, fake_server) -> None:
        fake_server.held.add("initialize")
        task = await _start_in_background(session)

        await session.stop()

        with pytest.raises(HandshakeError, match="abandoned"):
            await task
        assert session.state is S.STOPPED
        assert "shutdown" not in fake_server.methods()
        assert fake_server.process.signals == ["terminate"]

    async def test_stop_while_handshake_drains(self, session, fake_server, monkeypatch) -> None:
        async def slow_drain(self) -> None:
            await asyncio.sleep(0.01)

        monkeypatch.setattr(MemoryWriter, "drain", slow_drain)
        stops: list[asyncio.Task] = []

        def stop_when_initialized(event: SessionEvent) -> None:
            if event.kind is SessionEventKind.STATE_CHANGED and event.payload[1] is S.INITIALIZED:
                stops.append(asyncio.create_task(session.stop()))

        session.on_event(stop_when_initialized)
        with pytest.raises(HandshakeError, match="abandoned"):
            await session.start()
        await asyncio.gather(*stops)

        assert session.state is S.STOPPED
        assert fake_server.methods() == ["initialize", "initialized", "shutdown", "exit"]
        assert fake_server.process.signals == []

    async def test_stop_cancels_pending_requests(self, session, fake_server) -> None:
        fake_server.held.add("textDocument/hover")
        await session.start()
        task = asyncio.create_task(session.send_request("textDocument/hover", {}))
        await wait_until(lambda: session.pending_requests == 1)

        await session.stop()

        with pytest.raises(RequestCancelledError):
            await task


class TestCrash:
    async def test_crash_cancels_requests_and_reports_once(self, session, fake_server) -> None:
        fake_server.held.add("textDocument/hover")
        log = EventLog(session)
        await session.start()
        task = asyncio.create_task(session.send_request("textDocument/hover", {}))
        await wait_until(lambda: session.pending_requests == 1)

        fake_server.crash(3)

        with pytest.raises(RequestCancelledError):
            await task
        await wait_until(lambda: session.state is S.CRASHED)
        await asyncio.sleep(0.05)

        crashes = log.of(SessionEventKind.CRASHED)
        assert len(crashes) == 1
        assert isinstance(crashes[0].error, ServerCrashedError)
        assert crashes[0].error.exit_code == 3
        assert session.pending_requests == 0

    async def test_malformed_frame_crashes_session(self, session, fake_server) -> None:
        fake_server.held.add("textDocument/hover")
        log = EventLog(session)
        await session.start()
        task = asyncio.create_task(session.send_request("textDocument/hover", {}))
        await wait_until(lambda: session.pending_requests == 1)

        fake_server.process.stdout.feed_data(b"Content-Length: nope\r\n\r\n{}")

        with pytest.raises(RequestCancelledError):
            await task
        await wait_until(lambda: session.state is S.CRASHED)
        assert isinstance(session.failure, MalformedFrameError)
        assert len(log.of(SessionEventKind.CRASHED)) == 1

    async def test_message_after_stop_is_discarded(self, session, fake_server, caplog) -> None:
        await session.start()
        await session.stop()
        log = EventLog(session)
        late = {
            "jsonrpc": "2.0",
            "method": "window/showMessage",
            "params": {"type": 3, "message": "late"},
        }

        with caplog.at_level(logging.WARNING, logger="langclient.session"):
            await session._deliver(json.dumps(late).encode("utf-8"))

        assert log.events == []
        assert "Discarding message received while stopped" in caplog.text

    async def test_requests_after_crash_are_refused(self, session, fake_server) -> None:
        await session.start()
        fake_server.crash(1)
        await wait_until(lambda: session.state is S.CRASHED)

        with pytest.raises(ProtocolStateError):
            await session.send_request("textDocument/hover", {})

    async def test_stop_after_crash_is_noop(self, session, fake_server) -> None:
        await session.start()
        fake_server.crash(1)
        await wait_until(lambda: session.state is S.CRASHED)
        await session.stop()
        assert session.state is S.CRASHED


class TestHostMessages:
    async def test_send_request(self, session, fake_server) -> None:
        fake_server.results["textDocument/hover"] = {"contents": "int"}
        await session.start()
        assert await session.send_request("textDocument/hover", {"x": 1}) == {"contents": "int"}
        await session.stop()

    async def test_error_response_is_per_request(self, session, fake_server) -> None:
        fake_server.errors["textDocument/hover"] = {"code": -32602, "message": "bad"}
        await session.start()
        with pytest.raises(ResponseError):
            await session.send_request("textDocument/hover")
        assert session.state is S.INITIALIZED
        await session.stop()

    @pytest.mark.parametrize("method", ["initialize", "shutdown", "exit"])
    async def test_control_methods_are_reserved(self, session, method) -> None:
        await session.start()
        with pytest.raises(ProtocolStateError):
            await session.send_notification(method)
        await session.stop()

    async def test_send_before_start_is_refused(self, session) -> None:
        with pytest.raises(ProtocolStateError):
            await session.send_notification("textDocument/didOpen", {})

    async def test_set_trace(self, session, fake_server) -> None:
        await session.start()
        await session.set_trace("verbose")
        assert fake_server.params_of("$/setTrace") == [{"value": "verbose"}]
        await session.stop()


class TestRouting:
    async def test_documents_before_handshake_are_replayed(self, session, fake_server) -> None:
        await session.router.on_document_opened(MAIN)
        await session.start()
        assert fake_server.methods() == ["initialize", "initialized", "textDocument/didOpen"]
        await session.stop()

    async def test_non_matching_document_sends_nothing(self, session, fake_server) -> None:
        await session.start()
        notes = TextDocument(uri="file:///work/notes.txt", language_id="plaintext", text="hi")
        await session.router.on_document_opened(notes)
        await session.router.on_document_changed(notes)
        assert fake_server.methods() == ["initialize", "initialized"]
        await session.stop()

    async def test_nothing_forwarded_after_stop(self, session, fake_server) -> None:
        await session.start()
        await session.stop()
        sent = len(fake_server.received)
        await session.router.on_document_opened(MAIN)
        assert len(fake_server.received) == sent


class TestServerMessages:
    async def test_configuration_request(self, fake_server) -> None:
        session = ClientSession(make_client_config(), settings={"severity": {"fatal": True}})
        await session.start()

        sections = ["vapour.lsp", "vapour.lsp.severity", "r"]
        fake_server.request(
            7, "workspace/configuration", {"items": [{"section": s} for s in sections]}
        )
        await wait_until(lambda: fake_server.responses())

        assert fake_server.responses()[0] == {
            "jsonrpc": "2.0",
            "id": 7,
            "result": [{"severity": {"fatal": True}}, {"fatal": True}, None],
        }
        await session.stop()

    async def test_unknown_request_gets_method_not_found(self, session, fake_server) -> None:
        await session.start()
        fake_server.request("x1", "vapour/custom", {})
        await wait_until(lambda: fake_server.responses())

        response = fake_server.responses()[0]
        assert response["id"] == "x1"
        assert response["error"]["code"] == ErrorCodes.METHOD_NOT_FOUND
        assert session.state is S.INITIALIZED
        await session.stop()

    async def test_registration_is_acknowledged(self, session, fake_server) -> None:
        await session.start()
        fake_server.request(3, "client/registerCapability", {"registrations": []})
        await wait_until(lambda: fake_server.responses())
        assert fake_server.responses()[0] == {"jsonrpc": "2.0", "id": 3, "result": None}
        await session.stop()

    async def test_publish_diagnostics(self, session, fake_server) -> None:
        log = EventLog(session)
        await session.start()

        fake_server.notify("textDocument/publishDiagnostics", {
            "uri": MAIN.uri,
            "diagnostics": [{
                "range": {"start": {"line": 0, "character": 0}, "end": {"line": 0, "character": 3}},
                "severity": 1,
                "message": "type mismatch",
            }],
        })
        await wait_until(lambda: log.of(SessionEventKind.DIAGNOSTICS))

        assert [d.message for d in session.diagnostics.get(MAIN.uri)] == ["type mismatch"]
        assert log.of(SessionEventKind.DIAGNOSTICS)[0].payload.uri == MAIN.uri
        await session.stop()

    async def test_show_message_is_emitted(self, session, fake_server) -> None:
        log = EventLog(session)
        await session.start()
        fake_server.notify("window/showMessage", {"type": 3, "message": "indexing"})
        await wait_until(lambda: log.of(SessionEventKind.MESSAGE))
        assert log.of(SessionEventKind.MESSAGE)[0].payload.message == "indexing"
        await session.stop()

    async def test_invalid_notification_params_are_ignored(self, session, fake_server) -> None:
        await session.start()
        fake_server.notify("window/showMessage", {"oops": True})
        fake_server.notify("window/logMessage", {"type": 4, "message": "still alive"})
        await asyncio.sleep(0.05)
        assert session.state is S.INITIALIZED
        await session.stop()

    async def test_listener_failure_does_not_break_session(self, session, fake_server) -> None:
        def explode(event: SessionEvent) -> None:
            raise RuntimeError("listener bug")

        session.on_event(explode)
        await session.start()
        assert session.state is S.INITIALIZED
        await session.stop()
