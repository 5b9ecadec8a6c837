"""Persistence for credentials, recording history and preferences."""

from .preferences import PreferenceStore
from .credential_store import KeyRotationStore
from .recording_store import RecordingStore

__all__ = [
    "PreferenceStore",
    "KeyRotationStore",
    "RecordingStore",
]
