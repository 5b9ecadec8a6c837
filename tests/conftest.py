"""Pytest configuration and fixtures for LiveScribe tests."""

import asyncio
import logging
import tempfile
import time
import uuid
from typing import Optional
from unittest.mock import Mock, patch

import numpy as np
import pytest
from pubsub import pub

from livescribe.audio.publisher import AudioPublisher
from livescribe.config import LiveScribeConfig
from livescribe.models.audio import AudioChunk
from livescribe.transcription.publisher import TranscriptionPublisher


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@pytest.fixture(autouse=True)
def clean_pubsub():
    """Drop every pubsub listener after each test."""
    yield
    pub.unsubAll()


@pytest.fixture
def temp_data_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


def unique_prefix() -> str:
    """Topic prefix no other test shares."""
    return f"t{uuid.uuid4().hex[:8]}"


@pytest.fixture
def audio_publisher():
    return AudioPublisher(unique_prefix())


@pytest.fixture
def transcription_publisher():
    return TranscriptionPublisher(unique_prefix())


@pytest.fixture
def test_config(temp_data_dir):
    """Default configuration with all data under a temporary directory."""
    config = LiveScribeConfig()
    config.set('storage.data_directory', temp_data_dir)
    config.set('logging.file_path', f"{temp_data_dir}/logs/livescribe.log")
    return config


@pytest.fixture
def sample_samples():
    """A 4096-sample 440 Hz sine wave as float32 in [-1, 1]."""
    t = np.arange(4096) / 16000
    return (0.5 * np.sin(2 * np.pi * 440 * t)).astype(np.float32)


@pytest.fixture
def mock_pyaudio():
    """Mock PyAudio for testing without actual audio hardware."""
    with patch('pyaudio.PyAudio') as mock_pyaudio_class:
        mock_pyaudio_instance = Mock()
        mock_stream = Mock()

        # Configure mock stream
        mock_stream.read.return_value = b'\x00' * 3200  # Silent audio
        mock_stream.stop_stream.return_value = None
        mock_stream.close.return_value = None

        # Configure mock PyAudio instance
        mock_pyaudio_instance.open.return_value = mock_stream
        mock_pyaudio_instance.terminate.return_value = None
        mock_pyaudio_instance.get_default_input_device_info.return_value = {
            'index': 0, 'name': 'Mock Microphone', 'maxInputChannels': 1,
        }

        # Configure mock PyAudio class
        mock_pyaudio_class.return_value = mock_pyaudio_instance

        yield {
            'class': mock_pyaudio_class,
            'instance': mock_pyaudio_instance,
            'stream': mock_stream
        }


class Recorder:
    """Pubsub listener that records every signal it receives.

    pubsub holds listeners weakly, so tests keep a reference to the
    recorder for as long as they expect messages.
    """

    def __init__(self):
        self.chunks = []
        self.amplitudes = []
        self.messages = []
        self.results = []
        self.connections = []

    def on_chunk(self, chunk):
        self.chunks.append(chunk)

    def on_amplitude(self, amplitude):
        self.amplitudes.append(amplitude)

    def on_message(self, message):
        self.messages.append(message)

    def on_result(self, result):
        self.results.append(result)

    def on_connected(self, connected):
        self.connections.append(connected)

    def listen_audio(self, publisher: AudioPublisher) -> "Recorder":
        pub.subscribe(self.on_chunk, publisher.chunk_topic)
        pub.subscribe(self.on_amplitude, publisher.amplitude_topic)
        pub.subscribe(self.on_message, publisher.error_topic)
        return self

    def listen_transcription(self, publisher: TranscriptionPublisher) -> "Recorder":
        pub.subscribe(self.on_result, publisher.result_topic)
        pub.subscribe(self.on_message, publisher.error_topic)
        pub.subscribe(self.on_connected, publisher.connection_topic)
        return self


@pytest.fixture
def recorder():
    return Recorder()


class FakeCapture:
    """In-memory capture backend; chunks are emitted by the test."""

    def __init__(self, publisher: AudioPublisher, permission=True, start_ok=True,
                 audio_path: Optional[str] = None):
        self.publisher = publisher
        self.permission = permission
        self.start_ok = start_ok
        self.audio_path = audio_path
        self._is_recording = False
        self.start_calls = 0
        self.stop_calls = 0
        self.disposed = False
        self._sequence = 0

    @property
    def is_recording(self) -> bool:
        return self._is_recording

    def has_permission(self) -> bool:
        return self.permission

    def start(self) -> bool:
        self.start_calls += 1
        if not self.start_ok:
            self.publisher.publish_error("Failed to start recording: device busy")
            return False
        self._is_recording = True
        return True

    def stop(self) -> Optional[str]:
        self.stop_calls += 1
        if not self._is_recording:
            return None
        self._is_recording = False
        self.publisher.publish_amplitude(0.0)
        return self.audio_path

    def dispose(self) -> None:
        self.stop()
        self.disposed = True

    def emit(self, data: bytes) -> None:
        self._sequence += 1
        self.publisher.publish_chunk(AudioChunk(data=data, sequence_number=self._sequence, timestamp=time.time()))
        self.publisher.publish_amplitude(0.5)


class FakeSession:
    """Stand-in for StreamingTranscriptionSession that records what it is sent."""

    def __init__(self, publisher: TranscriptionPublisher, connect_ok=True):
        self.publisher = publisher
        self.connect_ok = connect_ok
        self.api_keys = []
        self.sent = []
        self.connected = False
        self.disconnect_calls = 0
        self.disposed = False

    async def connect(self, api_key: str) -> bool:
        self.api_keys.append(api_key)
        if not self.connect_ok:
            self.publisher.publish_error("Failed to obtain authentication token")
            self.publisher.publish_connection(False)
            return False
        self.connected = True
        self.publisher.publish_connection(True)
        return True

    async def send_audio_chunk(self, data: bytes) -> None:
        self.sent.append(data)

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False
        self.publisher.publish_connection(False)

    async def dispose(self) -> None:
        self.disposed = True
        await self.disconnect()


async def wait_until(predicate, timeout: float = 2.0) -> bool:
    """Poll ``predicate`` on the running loop until it holds or time runs out."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            return False
        await asyncio.sleep(0.01)
    return True
