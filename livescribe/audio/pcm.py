"""PCM16 frame encoding and WAV container helpers."""

import struct
from typing import Iterable, Sequence, Union

import numpy as np

BYTES_PER_SAMPLE = 2
WAV_HEADER_SIZE = 44
MAX_INT16_MAGNITUDE = 32768.0

_WAV_HEADER = struct.Struct('<4sI4s4sIHHIIHH4sI')


def encode_frame(samples: Union[Sequence[float], np.ndarray]) -> bytes:
    """Convert float samples in [-1, 1] to little-endian PCM16 bytes.

    Samples are clamped first; negative values scale by 32768 and
    non-negative values by 32767, truncating toward zero.
    """
    clipped = np.clip(np.asarray(samples, dtype=np.float64).reshape(-1), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 32768.0, clipped * 32767.0)
    return scaled.astype('<i2').tobytes()


def build_wav_header(data_length: int, sample_rate: int = 16000, channels: int = 1) -> bytes:
    """Build the 44-byte RIFF/WAVE header for ``data_length`` bytes of PCM16 audio."""
    byte_rate = sample_rate * channels * BYTES_PER_SAMPLE
    block_align = channels * BYTES_PER_SAMPLE
    return _WAV_HEADER.pack(
        b'RIFF',
        data_length + 36,
        b'WAVE',
        b'fmt ',
        16,  # fmt sub-chunk size for PCM
        1,   # audio format: PCM
        channels,
        sample_rate,
        byte_rate,
        block_align,
        16,  # bits per sample
        b'data',
        data_length,
    )


def build_wav_file(chunks: Iterable[bytes], sample_rate: int = 16000, channels: int = 1) -> bytes:
    """Concatenate PCM16 chunks behind a matching WAV header."""
    data = b''.join(chunks)
    return build_wav_header(len(data), sample_rate, channels) + data


def peak_amplitude(pcm_data: bytes) -> float:
    """Peak absolute sample of a PCM16 buffer, normalized to [0.0, 1.0]."""
    usable = len(pcm_data) - (len(pcm_data) % BYTES_PER_SAMPLE)
    if usable <= 0:
        return 0.0

    samples = np.frombuffer(pcm_data[:usable], dtype='<i2').astype(np.int32)
    peak = int(np.max(np.abs(samples)))
    return min(max(peak / MAX_INT16_MAGNITUDE, 0.0), 1.0)
