"""Transcription-related data models."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class TranscriptionResult:
    """One transcript update for a turn.

    A partial result (``is_final=False``) supersedes the previous partial of
    the same turn; a final result is appended to the session transcript.
    """
    text: str
    is_final: bool
    timestamp: datetime = field(default_factory=datetime.now)
