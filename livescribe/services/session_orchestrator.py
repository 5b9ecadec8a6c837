"""Core service that manages the recording and transcription lifecycle."""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pubsub import pub

from ..audio import AudioCaptureBackend, AudioPublisher, create_capture_backend
from ..config import LiveScribeConfig
from ..models.audio import AudioChunk
from ..models.session import RecordingSession
from ..models.transcription import TranscriptionResult
from ..storage import KeyRotationStore, PreferenceStore, RecordingStore
from ..transcription import StreamingTranscriptionSession, TranscriptAggregator, TranscriptionPublisher

logger = logging.getLogger(__name__)

NO_API_KEYS_ERROR = "No API keys configured. Please add an AssemblyAI API key in settings."
NO_TRANSCRIPT = "(No transcript)"


class SessionOrchestrator:
    """Runs one transcription session at a time.

    Wires the capture backend's chunk stream into the streaming session,
    keeps the live state a front end shows (amplitude, connection, partial
    and final transcript, last error) and saves each finished session to
    the recording history.
    """

    def __init__(self,
                 config: LiveScribeConfig,
                 capture: Optional[AudioCaptureBackend] = None,
                 session: Optional[StreamingTranscriptionSession] = None,
                 key_store: Optional[KeyRotationStore] = None,
                 recording_store: Optional[RecordingStore] = None):
        """Initialize the orchestrator.

        Args:
            config: Application configuration
            capture: Capture backend; built from ``audio.backend`` when omitted
            session: Streaming session; built from ``assemblyai.*`` when omitted
            key_store: API key rotation store
            recording_store: Recording history store
        """
        self.config = config

        preferences = None
        if key_store is None or recording_store is None:
            preferences = PreferenceStore(config.get_preferences_path())
        self.key_store = key_store or KeyRotationStore(preferences, config.get_default_api_keys())
        self.recording_store = recording_store or RecordingStore(preferences)

        self.capture = capture or create_capture_backend(config, AudioPublisher())
        self.audio_publisher: AudioPublisher = self.capture.publisher

        self.session = session or StreamingTranscriptionSession(
            publisher=TranscriptionPublisher(),
            token_url=config.get('assemblyai.token_url'),
            websocket_url=config.get('assemblyai.websocket_url'),
            sample_rate=config.get('assemblyai.sample_rate', 16000),
            token_timeout=config.get('assemblyai.token_timeout_seconds', 10.0),
            connect_timeout=config.get('assemblyai.connect_timeout_seconds', 10.0),
        )
        self.transcription_publisher: TranscriptionPublisher = self.session.publisher
        self.aggregator = TranscriptAggregator(self.transcription_publisher.result_topic)

        self.error_display_seconds = float(config.get('ui.error_display_seconds', 5.0))

        # Live state
        self.is_initialized = False
        self.is_recording = False
        self.is_connected = False
        self.error: Optional[str] = None
        self.amplitude = 0.0
        self.saved_sessions: List[RecordingSession] = []
        self.session_start_time: Optional[datetime] = None

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._audio_queue: Optional[asyncio.Queue] = None
        self._forward_task: Optional[asyncio.Task] = None
        self._audio_subscribed = False
        self._starting = False
        self._disposed = False

    @property
    def has_api_keys(self) -> bool:
        return self.key_store.has_keys

    @property
    def full_transcript(self) -> str:
        return self.aggregator.full_transcript

    @property
    def partial_transcript(self) -> str:
        return self.aggregator.partial_transcript

    @property
    def transcriptions(self) -> List[TranscriptionResult]:
        return self.aggregator.get_final_results()

    def initialize(self) -> None:
        """Load keys and history and start listening to capture and session signals."""
        if self.is_initialized:
            return

        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

        self.key_store.load()
        self._load_saved_sessions()
        self._setup_listeners()
        self.is_initialized = True
        logger.info("SessionOrchestrator initialized")

    def _setup_listeners(self) -> None:
        pub.subscribe(self._on_amplitude, self.audio_publisher.amplitude_topic)
        pub.subscribe(self._on_error, self.audio_publisher.error_topic)
        pub.subscribe(self._on_error, self.transcription_publisher.error_topic)
        pub.subscribe(self._on_connection, self.transcription_publisher.connection_topic)

    def _remove_listeners(self) -> None:
        for listener, topic in (
            (self._on_amplitude, self.audio_publisher.amplitude_topic),
            (self._on_error, self.audio_publisher.error_topic),
            (self._on_error, self.transcription_publisher.error_topic),
            (self._on_connection, self.transcription_publisher.connection_topic),
        ):
            try:
                pub.unsubscribe(listener, topic)
            except Exception as e:
                logger.warning(f"Error during unsubscribe from {topic}: {e}")

    def _load_saved_sessions(self) -> None:
        self.saved_sessions = self.recording_store.get_sessions()

    # Signal handlers. Capture signals arrive on the capture thread.

    def _on_amplitude(self, amplitude: float) -> None:
        self.amplitude = amplitude

    def _on_connection(self, connected: bool) -> None:
        self.is_connected = connected

    def _on_error(self, message: str) -> None:
        self._set_error(message)

    def _on_audio_chunk(self, chunk: AudioChunk) -> None:
        loop, queue = self._loop, self._audio_queue
        if loop is None or queue is None:
            return
        try:
            loop.call_soon_threadsafe(queue.put_nowait, chunk.data)
        except RuntimeError:
            logger.debug("Event loop closed, dropping audio chunk")

    def _set_error(self, message: str) -> None:
        """Show an error; it is cleared after ``error_display_seconds`` unless replaced."""
        self.error = message
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._schedule_error_clear, message)
        except RuntimeError:
            pass

    def _schedule_error_clear(self, message: str) -> None:
        self._loop.call_later(self.error_display_seconds, self._clear_error, message)

    def _clear_error(self, message: str) -> None:
        if self.error == message:
            self.error = None

    def _start_failed(self, message: str) -> Dict[str, Any]:
        self._set_error(message)
        logger.error(f"Could not start session: {message}")
        return {"success": False, "error": message}

    async def start_session(self) -> Dict[str, Any]:
        """Start a new transcription session.

        Returns:
            Result dictionary with success status and details
        """
        if self.is_recording or self._starting:
            return {"success": False, "error": "Already recording"}

        self._starting = True
        try:
            return await self._start_session()
        finally:
            self._starting = False

    async def _start_session(self) -> Dict[str, Any]:
        if not self.is_initialized:
            self.initialize()
        self._loop = asyncio.get_running_loop()
        self.error = None

        if not self.key_store.has_keys:
            return self._start_failed(NO_API_KEYS_ERROR)

        api_key = self.key_store.next_key()
        if api_key is None:
            return self._start_failed("Failed to get API key")

        has_permission = await asyncio.to_thread(self.capture.has_permission)
        if not has_permission:
            return self._start_failed("Microphone permission denied")

        connected = await self.session.connect(api_key)
        if not connected:
            return self._start_failed("Failed to connect to transcription service")

        # Subscribe before capture starts so no chunk is missed
        self._audio_queue = asyncio.Queue()
        pub.subscribe(self._on_audio_chunk, self.audio_publisher.chunk_topic)
        self._audio_subscribed = True

        started = await asyncio.to_thread(self.capture.start)
        if not started:
            self._unsubscribe_audio()
            self._audio_queue = None
            await self.session.disconnect()
            return self._start_failed("Failed to start recording")

        self._forward_task = asyncio.create_task(self._forward_audio(self._audio_queue))
        self.aggregator.clear()
        self.session_start_time = datetime.now()
        self.is_recording = True

        logger.info("Transcription session started")
        return {
            "success": True,
            "started_at": self.session_start_time.isoformat(),
        }

    async def _forward_audio(self, queue: asyncio.Queue) -> None:
        """Send queued chunks to the streaming session in capture order."""
        while True:
            data = await queue.get()
            await self.session.send_audio_chunk(data)

    def _unsubscribe_audio(self) -> None:
        if not self._audio_subscribed:
            return
        self._audio_subscribed = False
        try:
            pub.unsubscribe(self._on_audio_chunk, self.audio_publisher.chunk_topic)
        except Exception as e:
            logger.warning(f"Error during unsubscribe: {e}")

    async def _cancel_forwarding(self) -> None:
        task, self._forward_task = self._forward_task, None
        self._audio_queue = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])

    async def stop_session(self) -> Dict[str, Any]:
        """Stop the current session and save it when there is something to keep.

        Returns:
            Result dictionary with the saved session, if any
        """
        if not self.is_recording:
            return {"success": False, "error": "Not recording"}

        self.is_recording = False
        audio_path = None
        saved = None
        try:
            self._unsubscribe_audio()
            await self._cancel_forwarding()

            try:
                audio_path = await asyncio.to_thread(self.capture.stop)
            except Exception as e:
                logger.error(f"Error stopping capture: {e}")

            try:
                await self.session.disconnect()
            except Exception as e:
                logger.error(f"Error disconnecting session: {e}")

            saved = self._save_session(audio_path)
        finally:
            self.session_start_time = None
            self.amplitude = 0.0

        logger.info("Transcription session stopped")
        return {
            "success": True,
            "session": saved.to_dict() if saved else None,
            "audio_path": audio_path,
        }

    def _save_session(self, audio_path: Optional[str]) -> Optional[RecordingSession]:
        if self.session_start_time is None:
            return None

        end_time = datetime.now()
        full_text = self.full_transcript
        if not full_text and audio_path is None:
            logger.info("Nothing to save for this session")
            return None

        session = RecordingSession(
            id=str(int(end_time.timestamp() * 1000)),
            date_time=self.session_start_time,
            duration=end_time - self.session_start_time,
            transcript=full_text or NO_TRANSCRIPT,
            audio_path=audio_path,
        )
        try:
            self.recording_store.save_session(session)
        except OSError as e:
            self._set_error(f"Failed to save session: {e}")
            return None

        self._load_saved_sessions()
        return session

    def delete_session(self, session_id: str) -> None:
        """Delete a saved session."""
        self.recording_store.delete_session(session_id)
        self._load_saved_sessions()

    def clear_transcript(self) -> None:
        """Clear the transcript shown for the current or last session."""
        self.aggregator.clear()

    def add_api_key(self, key: str) -> None:
        self.key_store.add_key(key)

    def remove_api_key(self, index: int) -> None:
        self.key_store.remove_key(index)

    async def dispose(self) -> None:
        """Stop any active session and release capture, session and listeners."""
        if self._disposed:
            return
        self._disposed = True
        try:
            if self.is_recording:
                await self.stop_session()
        finally:
            if self.is_initialized:
                self._remove_listeners()
            self.aggregator.shutdown()
            try:
                await asyncio.to_thread(self.capture.dispose)
            except Exception as e:
                logger.warning(f"Error disposing capture backend: {e}")
            await self.session.dispose()
            logger.info("SessionOrchestrator disposed")
