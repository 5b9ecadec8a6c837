"""Streaming transcription module for LiveScribe."""

from .publisher import TranscriptionPublisher
from .aggregator import TranscriptAggregator
from .streaming_session import SessionState, StreamingTranscriptionSession
from ..models.transcription import TranscriptionResult

__all__ = [
    "SessionState",
    "StreamingTranscriptionSession",
    "TranscriptAggregator",
    "TranscriptionPublisher",
    "TranscriptionResult",
]
