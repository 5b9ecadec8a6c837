"""Session-related data models."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class RecordingSession:
    """A completed recording session as kept in the history."""
    id: str
    date_time: datetime
    duration: timedelta
    transcript: str
    audio_path: Optional[str] = None  # WAV export path, None when nothing was exported

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecordingSession":
        """Create a session from its stored JSON form."""
        try:
            date_time = datetime.fromisoformat(data['dateTime'])
        except (TypeError, ValueError):
            date_time = datetime.now()

        return cls(
            id=str(data['id']),
            date_time=date_time,
            duration=timedelta(milliseconds=int(data['durationMs'])),
            transcript=str(data['transcript']),
            audio_path=data.get('audioPath'),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert session to its stored JSON form."""
        return {
            'id': self.id,
            'dateTime': self.date_time.isoformat(),
            'durationMs': self.duration // timedelta(milliseconds=1),
            'transcript': self.transcript,
            'audioPath': self.audio_path,
        }
