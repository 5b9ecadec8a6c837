"""Audio capture and PCM framing module."""

import logging

from .base import AudioCaptureBackend
from .pcm import build_wav_file, build_wav_header, encode_frame, peak_amplitude
from .publisher import AudioPublisher

logger = logging.getLogger(__name__)


def create_capture_backend(config, publisher: AudioPublisher) -> AudioCaptureBackend:
    """Build the capture backend named by ``audio.backend``.

    Backends are imported on demand so only the selected one has to load
    its PortAudio binding.
    """
    backend = str(config.get('audio.backend', 'pyaudio')).lower()
    sample_rate = config.get('audio.sample_rate', 16000)
    channels = config.get('audio.channels', 1)
    device = config.get('audio.device')

    if backend == 'pyaudio':
        from .capture import PyAudioCapture
        capture = PyAudioCapture(
            publisher=publisher,
            sample_rate=sample_rate,
            chunk_size=config.get('audio.chunk_size', 1600),
            channels=channels,
            device=device,
        )
    elif backend == 'sounddevice':
        from .block_capture import SoundDeviceCapture
        capture = SoundDeviceCapture(
            publisher=publisher,
            recordings_dir=config.get_recordings_directory(),
            sample_rate=sample_rate,
            channels=channels,
            block_size=config.get('audio.block_size', 4096),
            device=device,
        )
    else:
        raise ValueError(f"Unknown audio backend: {backend}")

    logger.info(f"Using {backend} capture backend")
    return capture


__all__ = [
    'AudioCaptureBackend',
    'AudioPublisher',
    'build_wav_file',
    'build_wav_header',
    'create_capture_backend',
    'encode_frame',
    'peak_amplitude',
]
