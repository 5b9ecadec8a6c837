"""Data models for the LiveScribe application."""

from .audio import AudioChunk
from .transcription import TranscriptionResult
from .session import RecordingSession

__all__ = [
    "AudioChunk",
    "TranscriptionResult",
    "RecordingSession",
]
