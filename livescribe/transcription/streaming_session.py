"""Streaming transcription session over the AssemblyAI Universal Streaming v3 API.

Lifecycle::

    IDLE -> AUTHENTICATING -> CONNECTING -> AWAITING_READY -> ACTIVE -> CLOSING -> IDLE

``ERROR`` is entered when authentication or the websocket handshake fails
and always resolves to ``IDLE`` once the transport has been released.

Audio is only written to the websocket while ``ACTIVE``, i.e. after the
remote peer has sent its ``Begin`` message. Chunks offered earlier are
dropped, not queued. Inbound messages are handled one at a time by a
single receive task, in arrival order.
"""

import asyncio
import json
import logging
from enum import Enum
from typing import Optional, Union

import aiohttp

from .publisher import TranscriptionPublisher
from ..models.transcription import TranscriptionResult

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_URL = "http://localhost:3001/token"
DEFAULT_WEBSOCKET_URL = "wss://streaming.assemblyai.com/v3/ws"


class SessionState(Enum):
    IDLE = "idle"
    AUTHENTICATING = "authenticating"
    CONNECTING = "connecting"
    AWAITING_READY = "awaiting_ready"
    ACTIVE = "active"
    CLOSING = "closing"
    ERROR = "error"


class StreamingTranscriptionSession:
    """Owns the token exchange and websocket to the streaming service."""

    def __init__(self,
                 publisher: TranscriptionPublisher,
                 token_url: str = DEFAULT_TOKEN_URL,
                 websocket_url: str = DEFAULT_WEBSOCKET_URL,
                 sample_rate: int = 16000,
                 token_timeout: float = 10.0,
                 connect_timeout: float = 10.0):
        """Initialize the session.

        Args:
            publisher: Publisher for result, error and connection signals
            token_url: Relay that trades an API key for a short-lived token
            websocket_url: Streaming endpoint
            sample_rate: Sample rate announced to the service
            token_timeout: Seconds allowed for the token exchange
            connect_timeout: Seconds allowed for the websocket handshake
        """
        self.publisher = publisher
        self.token_url = token_url
        self.websocket_url = websocket_url
        self.sample_rate = sample_rate
        self.token_timeout = token_timeout
        self.connect_timeout = connect_timeout

        self._http: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._receive_task: Optional[asyncio.Task] = None
        self._state = SessionState.IDLE
        self._closing = False
        self._disposed = False

        self.remote_session_id: Optional[str] = None
        self.dropped_chunks = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state in (SessionState.AWAITING_READY, SessionState.ACTIVE)

    @property
    def is_ready(self) -> bool:
        """True once the service has acknowledged the session and accepts audio."""
        return self._state is SessionState.ACTIVE

    def _set_state(self, state: SessionState) -> None:
        if state is not self._state:
            logger.debug(f"Session state {self._state.value} -> {state.value}")
            self._state = state

    async def connect(self, api_key: str) -> bool:
        """Authenticate and open the streaming websocket.

        Returns True once the websocket is open. Readiness for audio is
        signalled later by the service's ``Begin`` message.
        """
        if not api_key:
            self.publisher.publish_error("No API key provided")
            return False

        if self._state is not SessionState.IDLE:
            logger.info("Already connected, disconnecting first...")
            await self.disconnect()

        logger.info(f"Connecting with API key: {api_key[:8]}...")
        self._closing = False
        self.remote_session_id = None
        self.dropped_chunks = 0
        self._set_state(SessionState.AUTHENTICATING)
        # Per-request timeouts apply; the session itself must not time out
        # a long-lived websocket.
        self._http = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None))

        token = await self._get_temporary_token(api_key)
        if token is None:
            await self._fail("Failed to obtain authentication token")
            return False

        self._set_state(SessionState.CONNECTING)
        logger.info(f"Connecting to WebSocket: {self.websocket_url}?sample_rate={self.sample_rate}&token=[TOKEN]")
        try:
            self._ws = await asyncio.wait_for(
                self._http.ws_connect(
                    self.websocket_url,
                    params={"sample_rate": str(self.sample_rate), "token": token},
                ),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError:
            await self._fail(f"Connection failed: no handshake within {self.connect_timeout}s")
            return False
        except (aiohttp.ClientError, OSError, ValueError) as e:
            await self._fail(f"Connection failed: {e}")
            return False

        self._set_state(SessionState.AWAITING_READY)
        self.publisher.publish_connection(True)
        self._receive_task = asyncio.create_task(self._receive_loop(self._ws))
        logger.info("Connected successfully, waiting for session to begin")
        return True

    async def _get_temporary_token(self, api_key: str) -> Optional[str]:
        """Exchange the long-lived API key for a streaming token via the relay."""
        logger.info("Getting temporary token from relay...")
        headers = {"Authorization": api_key, "Content-Type": "application/json"}
        try:
            async with self._http.post(
                self.token_url,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.token_timeout),
            ) as response:
                body = await response.text()
                logger.info(f"Token response status: {response.status}")
                if response.status != 200:
                    self.publisher.publish_error(f"Failed to get auth token: {response.status} - {body}")
                    return None
                data = json.loads(body)
        except asyncio.TimeoutError:
            self.publisher.publish_error(f"Token request failed: no response within {self.token_timeout}s")
            return None
        except (aiohttp.ClientError, OSError, ValueError) as e:
            self.publisher.publish_error(f"Token request failed: {e}")
            return None

        token = data.get("token") if isinstance(data, dict) else None
        if not isinstance(token, str) or not token:
            self.publisher.publish_error("Token request failed: response has no token")
            return None

        logger.info(f"Token obtained successfully (length: {len(token)})")
        return token

    async def _fail(self, message: str) -> None:
        self._set_state(SessionState.ERROR)
        self.publisher.publish_error(message)
        try:
            await self._release_transport()
        finally:
            self._set_state(SessionState.IDLE)
            self.publisher.publish_connection(False)

    async def send_audio_chunk(self, data: bytes) -> None:
        """Send PCM16 audio; silently dropped unless the session is ready."""
        ws = self._ws
        if self._state is not SessionState.ACTIVE or ws is None:
            self.dropped_chunks += 1
            return

        try:
            await ws.send_bytes(data)
        except (aiohttp.ClientError, OSError, RuntimeError) as e:
            self.publisher.publish_error(f"Failed to send audio: {e}")

    def handle_message(self, message: Union[str, bytes]) -> None:
        """Decode one inbound message and publish what it carries."""
        if not isinstance(message, str):
            logger.debug(f"Ignoring non-text message ({len(message)} bytes)")
            return

        logger.debug(f"Received message: {message[:200]}")
        try:
            data = json.loads(message)
        except ValueError as e:
            self.publisher.publish_error(f"Failed to parse message: {e}")
            return
        if not isinstance(data, dict):
            self.publisher.publish_error("Failed to parse message: expected a JSON object")
            return

        message_type = data.get("type")

        if message_type == "Turn":
            text = data.get("transcript") or ""
            end_of_turn = bool(data.get("end_of_turn", False))
            logger.debug(f"Turn transcript: {text} (end_of_turn: {end_of_turn})")
            if text:
                self.publisher.publish_result(TranscriptionResult(text=str(text), is_final=end_of_turn))
        elif message_type == "Begin":
            if self._state is not SessionState.AWAITING_READY:
                logger.warning(f"Ignoring Begin while {self._state.value}")
                return
            self.remote_session_id = data.get("id")
            logger.info(f"Session began! ID: {self.remote_session_id}")
            self._set_state(SessionState.ACTIVE)
            self.publisher.publish_connection(True)
        elif message_type == "Termination":
            logger.info(f"Session terminated. Audio duration: {data.get('audio_duration_seconds')} seconds")
            self._set_state(SessionState.CLOSING)
            self.publisher.publish_connection(False)
        elif message_type == "error" or data.get("error") is not None:
            error_message = data.get("error") or data.get("message") or "Unknown error"
            self.publisher.publish_error(str(error_message))
        else:
            logger.debug(f"Unknown message type: {message_type}")

    async def _receive_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        error_message = None
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self.handle_message(msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    self.handle_message(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    error_message = f"WebSocket error: {ws.exception()}"
                    break
        except (aiohttp.ClientError, OSError) as e:
            error_message = f"WebSocket error: {e}"

        if self._closing:
            return

        # The service or the network ended the session
        if error_message:
            self.publisher.publish_error(error_message)
        logger.info("WebSocket connection closed")
        try:
            await self._release_transport()
        finally:
            self._set_state(SessionState.IDLE)
            self.publisher.publish_connection(False)

    async def _release_transport(self) -> None:
        """Cancel the receive task and close websocket and HTTP session."""
        task, self._receive_task = self._receive_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            await asyncio.wait([task])

        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.warning(f"Error closing WebSocket: {e}")

        http, self._http = self._http, None
        if http is not None:
            try:
                await http.close()
            except Exception as e:
                logger.warning(f"Error closing HTTP session: {e}")

    async def disconnect(self) -> None:
        """Terminate the remote session and close the websocket.

        Always leaves the session IDLE and publishes connected=False, even
        when sending the terminate message or closing fails.
        """
        logger.info("Disconnecting...")
        self._closing = True
        try:
            ws = self._ws
            if self.is_connected and ws is not None and not ws.closed:
                self._set_state(SessionState.CLOSING)
                try:
                    await ws.send_str(json.dumps({"type": "Terminate"}))
                except Exception as e:
                    logger.warning(f"Failed to send terminate message: {e}")
            await self._release_transport()
        finally:
            self._set_state(SessionState.IDLE)
            self._closing = False
            self.publisher.publish_connection(False)

        if self.dropped_chunks:
            logger.info(f"{self.dropped_chunks} audio chunk(s) dropped before the session was ready")
        logger.info("Disconnected")

    async def dispose(self) -> None:
        """Disconnect and release every listener of this session's topics."""
        if self._disposed:
            return
        self._disposed = True
        try:
            await self.disconnect()
        finally:
            self.publisher.unsubscribe_all()
