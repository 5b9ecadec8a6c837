"""Persistence of completed recording sessions."""

import logging
from typing import List

from .preferences import PreferenceStore
from ..models.session import RecordingSession

logger = logging.getLogger(__name__)

SESSIONS_PREFERENCE = "recording_sessions"


class RecordingStore:
    """Stores recording sessions as a most-recent-first list of JSON records."""

    def __init__(self, preferences: PreferenceStore):
        self.preferences = preferences

    def save_session(self, session: RecordingSession) -> None:
        """Insert a session at the top of the history."""
        sessions = self.get_sessions()
        sessions.insert(0, session)
        self._write(sessions)
        logger.info(f"Recording session saved: {session.id}")

    def get_sessions(self) -> List[RecordingSession]:
        """Return all readable sessions; malformed records are skipped."""
        sessions = []
        for record in self.preferences.get(SESSIONS_PREFERENCE) or []:
            try:
                sessions.append(RecordingSession.from_dict(record))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed recording session record: {e}")
        return sessions

    def delete_session(self, session_id: str) -> None:
        """Remove the session with ``session_id`` if it exists."""
        sessions = self.get_sessions()
        remaining = [s for s in sessions if s.id != session_id]
        if len(remaining) == len(sessions):
            return
        self._write(remaining)
        logger.info(f"Recording session deleted: {session_id}")

    def clear_all(self) -> None:
        """Remove the whole history."""
        self.preferences.remove(SESSIONS_PREFERENCE)

    def _write(self, sessions: List[RecordingSession]) -> None:
        self.preferences.set(SESSIONS_PREFERENCE, [s.to_dict() for s in sessions])
