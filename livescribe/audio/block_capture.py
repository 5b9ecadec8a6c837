"""Block-buffered microphone capture powered by sounddevice/PortAudio callbacks."""

import logging
import threading
import time
from pathlib import Path
from typing import List, Optional, Union

import numpy as np

from .pcm import build_wav_file, encode_frame, peak_amplitude
from .publisher import AudioPublisher
from ..models.audio import AudioChunk

logger = logging.getLogger(__name__)


class SoundDeviceCapture:
    """Capture float32 samples on the PortAudio callback thread.

    Samples are gathered into fixed blocks of ``block_size`` before each
    PCM16 encode-and-publish cycle, so a chunk lags capture by at most
    ``block_size / sample_rate`` seconds (256 ms for the defaults). Emitted
    chunks are also kept so ``stop()`` can export them as a WAV file.
    """

    def __init__(
        self,
        publisher: AudioPublisher,
        recordings_dir: Union[str, Path],
        sample_rate: int = 16000,
        channels: int = 1,
        block_size: int = 4096,
        device: Optional[Union[int, str]] = None,
    ):
        self.publisher = publisher
        self.recordings_dir = Path(recordings_dir)
        self.sample_rate = sample_rate
        self.channels = channels
        self.block_size = block_size
        self.device = device

        self._sd = None
        self._stream = None
        self._is_recording = False
        self._lock = threading.Lock()

        self._buffer = np.zeros(block_size, dtype=np.float32)
        self._buffer_index = 0
        self._audio_chunks: List[bytes] = []
        self._sequence = 0

    @property
    def is_recording(self) -> bool:
        return self._is_recording

    def _load_backend(self) -> bool:
        """Load PortAudio through sounddevice before first use."""
        if self._sd is not None:
            return True
        try:
            import sounddevice as sd
        except (ImportError, OSError) as exc:
            self.publisher.publish_error(f"sounddevice is unavailable: {exc}")
            return False
        self._sd = sd
        logger.info("sounddevice backend loaded")
        return True

    def has_permission(self) -> bool:
        """Probe the microphone by briefly opening an input stream.

        On platforms that gate microphone access this may show the OS
        permission prompt.
        """
        if not self._load_backend():
            return False
        try:
            with self._sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="float32",
                device=self.device,
            ):
                pass
        except Exception as exc:
            logger.warning(f"Microphone probe failed: {exc}")
            return False
        return True

    def start(self) -> bool:
        if self._is_recording:
            return True
        if not self._load_backend():
            return False

        with self._lock:
            self._reset_buffer()
            self._audio_chunks = []
            self._sequence = 0

        # PortAudio offers no echo cancellation, noise suppression or auto
        # gain switches; the host input chain is used as configured.
        stream = None
        try:
            stream = self._sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="float32",
                device=self.device,
                callback=self._callback,
            )
            self._is_recording = True
            stream.start()
        except Exception as exc:
            self._is_recording = False
            if stream is not None:
                try:
                    stream.close()
                except Exception as close_exc:
                    logger.warning(f"Error closing failed stream: {close_exc}")
            self.publisher.publish_error(f"Failed to start recording: {exc}")
            return False

        self._stream = stream
        logger.info(
            f"sounddevice capture started: {self.sample_rate}Hz, "
            f"{self.block_size} samples/block"
        )
        logger.info("Echo cancellation, noise suppression and auto gain left to the host input chain")
        return True

    def stop(self) -> Optional[str]:
        """Stop capture and export everything emitted so far as a WAV file."""
        if not self._is_recording:
            return None

        stream, self._stream = self._stream, None
        self._is_recording = False
        try:
            if stream is not None:
                try:
                    stream.stop()
                    stream.close()
                except Exception as exc:
                    logger.warning(f"Error closing input stream: {exc}")

            with self._lock:
                chunks, self._audio_chunks = self._audio_chunks, []
                # A partially filled block is discarded
                self._reset_buffer()

            if not chunks:
                return None
            return self._export_wav(chunks)
        finally:
            self.publisher.publish_amplitude(0.0)

    def dispose(self) -> None:
        try:
            self.stop()
        finally:
            self._sd = None

    def _callback(self, indata, frames, time_info, status) -> None:
        if status:
            logger.warning(f"sounddevice status: {status}")
        # Only the first channel is used, as mono
        self._process_samples(indata[:, 0])

    def _process_samples(self, samples) -> None:
        """Accumulate float samples and emit every completed block."""
        samples = np.asarray(samples, dtype=np.float32).reshape(-1)
        ready: List[bytes] = []

        with self._lock:
            offset = 0
            while offset < len(samples):
                take = min(self.block_size - self._buffer_index, len(samples) - offset)
                self._buffer[self._buffer_index:self._buffer_index + take] = samples[offset:offset + take]
                self._buffer_index += take
                offset += take

                if self._buffer_index >= self.block_size:
                    pcm = encode_frame(self._buffer)
                    self._buffer_index = 0
                    if self._is_recording:
                        self._audio_chunks.append(pcm)
                    ready.append(pcm)

        for pcm in ready:
            self._emit(pcm)

    def _emit(self, pcm: bytes) -> None:
        self._sequence += 1
        chunk = AudioChunk(
            data=pcm,
            sequence_number=self._sequence,
            timestamp=time.time(),
            sample_rate=self.sample_rate,
            channels=self.channels,
        )
        self.publisher.publish_chunk(chunk)
        self.publisher.publish_amplitude(peak_amplitude(pcm))

    def _reset_buffer(self) -> None:
        self._buffer = np.zeros(self.block_size, dtype=np.float32)
        self._buffer_index = 0

    def _export_wav(self, chunks: List[bytes]) -> Optional[str]:
        file_path = self.recordings_dir / f"recording_{int(time.time() * 1000)}.wav"
        try:
            self.recordings_dir.mkdir(parents=True, exist_ok=True)
            file_path.write_bytes(build_wav_file(chunks, self.sample_rate, self.channels))
        except OSError as exc:
            self.publisher.publish_error(f"Failed to save recording: {exc}")
            return None

        logger.info(f"Recording exported: {file_path}")
        return str(file_path)
