"""Integration tests for the streaming session against a local token relay and websocket peer."""

import asyncio
import json
from contextlib import asynccontextmanager

import pytest
from aiohttp import WSMsgType, web
from aiohttp import test_utils

from livescribe.services import SessionOrchestrator
from livescribe.transcription import SessionState, StreamingTranscriptionSession, TranscriptAggregator

from conftest import FakeCapture, wait_until


def make_app(state, hang_up_after_begin=False, token_body=None, token_delay=0.0, handshake_delay=0.0):
    """Token relay plus a websocket peer speaking Begin/Turn/Termination.

    ``token_body`` replaces the relay's 200 response text; the delays stall
    the token reply and the websocket upgrade.
    """

    async def token(request):
        key = request.headers.get("Authorization")
        state["keys"].append(key)
        if key == "bad-key":
            return web.Response(status=401, text="invalid api key")
        if token_delay:
            await asyncio.sleep(token_delay)
        if token_body is not None:
            return web.Response(status=200, text=token_body, content_type="application/json")
        return web.json_response({"token": "temp-token"})

    async def stream(request):
        state["query"] = dict(request.query)
        if handshake_delay:
            await asyncio.sleep(handshake_delay)
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        state["sockets"].append(ws)
        await ws.send_str(json.dumps({"type": "Begin", "id": "remote-1", "expires_at": 0}))
        if hang_up_after_begin:
            await ws.close()
            return ws

        async for msg in ws:
            if msg.type == WSMsgType.BINARY:
                state["audio"].append(msg.data)
                if len(state["audio"]) == 1:
                    await ws.send_str(json.dumps({"type": "Turn", "transcript": "hello", "end_of_turn": False}))
                elif len(state["audio"]) == 2:
                    await ws.send_str(json.dumps({"type": "Turn", "transcript": "hello world", "end_of_turn": True}))
            elif msg.type == WSMsgType.TEXT:
                if json.loads(msg.data).get("type") == "Terminate":
                    state["terminated"] = True
                    await ws.send_str(json.dumps({"type": "Termination", "audio_duration_seconds": 0.2}))
                    break

        await ws.close()
        return ws

    app = web.Application()
    app.router.add_post("/token", token)
    app.router.add_get("/ws", stream)
    return app


@asynccontextmanager
async def relay(**options):
    state = {"keys": [], "audio": [], "query": None, "terminated": False, "sockets": []}
    server = test_utils.TestServer(make_app(state, **options))
    await server.start_server()
    try:
        yield server, state
    finally:
        await server.close()


def make_session(server, publisher, **kwargs):
    return StreamingTranscriptionSession(
        publisher,
        token_url=str(server.make_url("/token")),
        websocket_url=str(server.make_url(kwargs.pop("ws_path", "/ws"))),
        **kwargs,
    )


@pytest.mark.integration
class TestStreamingSessionServer:
    """End-to-end session lifecycle over real HTTP and websocket transports."""

    @pytest.mark.asyncio
    async def test_full_session(self, transcription_publisher, recorder):
        events = recorder.listen_transcription(transcription_publisher)
        aggregator = TranscriptAggregator(transcription_publisher.result_topic)

        async with relay() as (server, state):
            session = make_session(server, transcription_publisher)

            assert await session.connect("good-key") is True
            assert await wait_until(lambda: session.is_ready)
            assert session.remote_session_id == "remote-1"

            await session.send_audio_chunk(b'\x01\x00' * 160)
            await session.send_audio_chunk(b'\x02\x00' * 160)
            assert await wait_until(lambda: aggregator.full_transcript == "hello world")

            await session.disconnect()
            assert await wait_until(lambda: state["terminated"])

        assert state["keys"] == ["good-key"]
        assert state["query"] == {"sample_rate": "16000", "token": "temp-token"}
        assert state["audio"] == [b'\x01\x00' * 160, b'\x02\x00' * 160]
        assert [(r.text, r.is_final) for r in events.results] == [("hello", False), ("hello world", True)]
        assert events.connections[0] is True
        assert events.connections[-1] is False
        assert events.messages == []
        assert session.state is SessionState.IDLE

    @pytest.mark.asyncio
    async def test_rejected_api_key(self, transcription_publisher, recorder):
        events = recorder.listen_transcription(transcription_publisher)

        async with relay() as (server, state):
            session = make_session(server, transcription_publisher)
            assert await session.connect("bad-key") is False

        assert events.messages == [
            "Failed to get auth token: 401 - invalid api key",
            "Failed to obtain authentication token",
        ]
        assert events.connections == [False]
        assert session.state is SessionState.IDLE
        assert state["query"] is None

    @pytest.mark.asyncio
    async def test_handshake_failure(self, transcription_publisher, recorder):
        events = recorder.listen_transcription(transcription_publisher)

        async with relay() as (server, state):
            session = make_session(server, transcription_publisher, ws_path="/missing")
            assert await session.connect("good-key") is False

        assert len(events.messages) == 1
        assert events.messages[0].startswith("Connection failed: ")
        assert events.connections == [False]
        assert session.state is SessionState.IDLE

    @pytest.mark.asyncio
    async def test_unreachable_relay(self, transcription_publisher, recorder):
        events = recorder.listen_transcription(transcription_publisher)
        session = StreamingTranscriptionSession(transcription_publisher, token_url="http://127.0.0.1:9/token")

        assert await session.connect("good-key") is False

        assert events.messages[0].startswith("Token request failed: ")
        assert events.messages[-1] == "Failed to obtain authentication token"
        assert session.state is SessionState.IDLE

    @pytest.mark.asyncio
    async def test_remote_hang_up(self, transcription_publisher, recorder):
        events = recorder.listen_transcription(transcription_publisher)

        async with relay(hang_up_after_begin=True) as (server, state):
            session = make_session(server, transcription_publisher)
            assert await session.connect("good-key") is True
            assert await wait_until(lambda: events.connections[-1:] == [False])

        assert session.state is SessionState.IDLE
        assert events.connections == [True, True, False]
        await session.disconnect()
        assert session.state is SessionState.IDLE

    @pytest.mark.asyncio
    async def test_reconnect_replaces_open_channel(self, transcription_publisher, recorder):
        events = recorder.listen_transcription(transcription_publisher)

        async with relay() as (server, state):
            session = make_session(server, transcription_publisher)
            assert await session.connect("good-key") is True
            assert await wait_until(lambda: session.is_ready)

            assert await session.connect("good-key") is True
            assert await wait_until(lambda: session.is_ready)

            assert len(state["sockets"]) == 2
            assert await wait_until(lambda: state["sockets"][0].closed)
            assert state["terminated"] is True
            assert state["sockets"][1].closed is False
            assert session.state is SessionState.ACTIVE

            await session.disconnect()

        # The first channel is torn down before the second one opens
        first_close = events.connections.index(False)
        assert events.connections[:first_close] == [True, True]
        assert events.connections[first_close + 1:first_close + 3] == [True, True]
        assert state["keys"] == ["good-key", "good-key"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", ['{}', '{"token": 5}', '{"token": ""}', '["temp-token"]'])
    async def test_token_response_without_token(self, transcription_publisher, recorder, body):
        events = recorder.listen_transcription(transcription_publisher)

        async with relay(token_body=body) as (server, state):
            session = make_session(server, transcription_publisher)
            assert await session.connect("good-key") is False

        assert events.messages == [
            "Token request failed: response has no token",
            "Failed to obtain authentication token",
        ]
        assert events.connections == [False]
        assert session.state is SessionState.IDLE
        assert state["query"] is None

    @pytest.mark.asyncio
    async def test_token_response_not_json(self, transcription_publisher, recorder):
        events = recorder.listen_transcription(transcription_publisher)

        async with relay(token_body="<html>bad gateway</html>") as (server, state):
            session = make_session(server, transcription_publisher)
            assert await session.connect("good-key") is False

        assert len(events.messages) == 2
        assert events.messages[0].startswith("Token request failed: ")
        assert events.messages[0] != "Token request failed: response has no token"
        assert events.messages[1] == "Failed to obtain authentication token"
        assert session.state is SessionState.IDLE

    @pytest.mark.asyncio
    async def test_token_request_times_out(self, transcription_publisher, recorder):
        events = recorder.listen_transcription(transcription_publisher)

        async with relay(token_delay=1.0) as (server, state):
            session = make_session(server, transcription_publisher, token_timeout=0.3)
            assert await session.connect("good-key") is False

        assert events.messages == [
            "Token request failed: no response within 0.3s",
            "Failed to obtain authentication token",
        ]
        assert events.connections == [False]
        assert session.state is SessionState.IDLE

    @pytest.mark.asyncio
    async def test_handshake_times_out(self, transcription_publisher, recorder):
        events = recorder.listen_transcription(transcription_publisher)

        async with relay(handshake_delay=1.0) as (server, state):
            session = make_session(server, transcription_publisher, connect_timeout=0.3)
            assert await session.connect("good-key") is False

        assert events.messages == ["Connection failed: no handshake within 0.3s"]
        assert events.connections == [False]
        assert session.state is SessionState.IDLE


@pytest.mark.integration
class TestOrchestratorServer:
    """Orchestrator driving a real streaming session."""

    @pytest.mark.asyncio
    async def test_record_and_save(self, test_config, audio_publisher):
        capture = FakeCapture(audio_publisher)

        async with relay() as (server, state):
            test_config.set('assemblyai.token_url', str(server.make_url("/token")))
            test_config.set('assemblyai.websocket_url', str(server.make_url("/ws")))
            orchestrator = SessionOrchestrator(test_config, capture=capture)
            orchestrator.initialize()
            orchestrator.add_api_key("good-key")

            result = await orchestrator.start_session()
            assert result["success"] is True
            assert await wait_until(lambda: orchestrator.session.is_ready)

            capture.emit(b'\x01\x00' * 160)
            capture.emit(b'\x02\x00' * 160)
            assert await wait_until(lambda: orchestrator.full_transcript == "hello world")

            stopped = await orchestrator.stop_session()
            await orchestrator.dispose()

        assert stopped["session"]["transcript"] == "hello world"
        assert [s.transcript for s in orchestrator.saved_sessions] == ["hello world"]
        assert state["audio"] == [b'\x01\x00' * 160, b'\x02\x00' * 160]
        assert orchestrator.is_connected is False
