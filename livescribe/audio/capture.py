"""Native microphone capture using PyAudio blocking reads on a reader thread."""

import pyaudio
import time
import logging
from threading import Thread, Event
from typing import Optional, Union
from datetime import datetime

from .pcm import peak_amplitude
from .publisher import AudioPublisher
from ..models.audio import AudioChunk


logger = logging.getLogger(__name__)


class PyAudioCapture:
    """Continuous PCM16 capture that publishes each chunk as it is read.

    PortAudio delivers int16 frames directly, so chunks are forwarded
    without re-encoding and nothing is kept for export: ``stop()`` always
    returns None.
    """

    def __init__(
        self,
        publisher: AudioPublisher,
        sample_rate: int = 16000,
        chunk_size: int = 1600,
        channels: int = 1,
        device: Optional[Union[int, str]] = None,
    ):
        """Initialize audio capture with specified parameters.

        Args:
            publisher: Publisher for chunk, amplitude and error signals
            sample_rate: Audio sample rate (16kHz for the streaming service)
            chunk_size: Size of each audio chunk in samples
            channels: Number of audio channels (1 for mono)
            device: PortAudio input device index, None for the default device
        """
        self.publisher = publisher
        self.sample_rate = sample_rate
        self.chunk_size = chunk_size
        self.channels = channels
        self.device = device
        self.format = pyaudio.paInt16

        # Recording thread management
        self.recording_thread: Optional[Thread] = None
        self.stop_event = Event()
        self._is_recording = False

        # Statistics tracking
        self.start_time: Optional[datetime] = None
        self.total_chunks = 0
        self.recorded_ms = 0

        # PyAudio instance, created lazily and kept until dispose()
        self.pyaudio_instance: Optional[pyaudio.PyAudio] = None
        self.stream = None

    @property
    def is_recording(self) -> bool:
        return self._is_recording

    def _get_pyaudio(self) -> pyaudio.PyAudio:
        if self.pyaudio_instance is None:
            self.pyaudio_instance = pyaudio.PyAudio()
        return self.pyaudio_instance

    def has_permission(self) -> bool:
        """Check for a usable input device without opening a stream.

        PortAudio has no permission API; an OS-level denial shows up as no
        default input device, so this never triggers a permission prompt.
        """
        try:
            info = self._get_pyaudio().get_default_input_device_info()
        except OSError as e:
            logger.warning(f"No default input device available: {e}")
            return False
        except Exception as e:
            self.publisher.publish_error(f"Permission check failed: {e}")
            return False
        return int(info.get('maxInputChannels', 0)) > 0

    def start(self) -> bool:
        """Open the input stream and start reading in a background thread."""
        if self._is_recording:
            return True

        logger.info("Starting audio recording")
        try:
            self.stream = self.__open_audio_stream()
        except Exception as e:
            self.stream = None
            self.publisher.publish_error(f"Failed to start recording: {e}")
            return False

        self.stop_event.clear()
        self.start_time = datetime.now()
        self.total_chunks = 0
        self.recorded_ms = 0

        # Start recording thread
        self.recording_thread = Thread(target=self._record_continuously, daemon=True)
        self.recording_thread.name = "AudioCaptureThread"
        self._is_recording = True
        self.recording_thread.start()
        return True

    def stop(self) -> Optional[str]:
        """Stop recording and release the input stream."""
        if not self._is_recording:
            return None

        logger.info("Stopping audio recording")
        self.stop_event.set()

        try:
            # Wait for recording thread to finish
            if self.recording_thread and self.recording_thread.is_alive():
                self.recording_thread.join(timeout=2.0)
                if self.recording_thread.is_alive():
                    logger.warning("Recording thread did not stop cleanly")
            self.__close_audio_stream()
        finally:
            self._is_recording = False
            self.recording_thread = None
            self.publisher.publish_amplitude(0.0)

        logger.info(f"Recording stopped. Total chunks: {self.total_chunks} ({self.recorded_ms} ms of audio)")
        return None

    def dispose(self) -> None:
        """Stop recording and terminate PortAudio."""
        try:
            self.stop()
        finally:
            if self.pyaudio_instance is not None:
                try:
                    self.pyaudio_instance.terminate()
                except Exception as e:
                    logger.warning(f"Error terminating PyAudio: {e}")
                self.pyaudio_instance = None

    def __open_audio_stream(self):
        # Echo cancellation, noise suppression and auto gain are not exposed
        # by PortAudio; whatever the OS input chain applies is kept.
        stream = self._get_pyaudio().open(
            format=self.format,
            channels=self.channels,
            rate=self.sample_rate,
            input=True,
            input_device_index=self.device,
            frames_per_buffer=self.chunk_size,
            stream_callback=None
        )
        logger.info(f"Audio stream opened: {self.sample_rate}Hz, "
                    f"{self.chunk_size} samples/chunk")
        logger.info("Echo cancellation, noise suppression and auto gain left to the host input chain")
        return stream

    def __close_audio_stream(self) -> None:
        stream, self.stream = self.stream, None
        if stream is None:
            return
        try:
            stream.stop_stream()
            stream.close()
        except Exception as e:
            logger.warning(f"Error closing audio stream: {e}")

    def __publish_audio_chunk(self, audio_data: bytes) -> None:
        self.total_chunks += 1
        chunk = AudioChunk(
            data=audio_data,
            sequence_number=self.total_chunks,
            timestamp=time.time(),
            sample_rate=self.sample_rate,
            channels=self.channels,
        )
        self.recorded_ms += chunk.duration_ms
        self.publisher.publish_chunk(chunk)
        self.publisher.publish_amplitude(peak_amplitude(audio_data))

    def _record_continuously(self) -> None:
        """Internal method: continuous recording loop in background thread."""
        stream = self.stream
        try:
            while not self.stop_event.is_set():
                audio_data = stream.read(self.chunk_size, exception_on_overflow=False)
                if audio_data:
                    self.__publish_audio_chunk(audio_data)
        except Exception as e:
            if self.stop_event.is_set():
                return
            self.publisher.publish_error(f"Audio stream error: {e}")
            self._is_recording = False
            self.__close_audio_stream()
            self.publisher.publish_amplitude(0.0)
