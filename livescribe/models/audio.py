"""Audio-related data models."""

from dataclasses import dataclass


@dataclass(frozen=True)
class AudioChunk:
    """A block of PCM16 little-endian mono samples emitted by a capture backend."""
    data: bytes
    sequence_number: int
    timestamp: float  # Unix timestamp when the chunk was emitted
    sample_rate: int = 16000
    channels: int = 1

    @property
    def duration_ms(self) -> int:
        """Duration of this chunk, based on 16-bit samples."""
        bytes_per_second = self.sample_rate * self.channels * 2
        if not bytes_per_second:
            return 0
        return int(len(self.data) * 1000 / bytes_per_second)
