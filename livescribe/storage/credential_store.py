"""Round-robin rotation over a persisted set of AssemblyAI API keys."""

import logging
from typing import Iterable, List, Optional

from .preferences import PreferenceStore

logger = logging.getLogger(__name__)

KEYS_PREFERENCE = "assemblyai_api_keys"
INDEX_PREFERENCE = "assemblyai_key_index"


class KeyRotationStore:
    """Hands out API keys in strict rotation, one per transcription session.

    The key list and the rotation cursor are stored under separate
    preference keys. The cursor is always in ``[0, len(keys))``, or 0 when
    there are no keys.
    """

    def __init__(self, preferences: PreferenceStore, default_keys: Iterable[str] = ()):
        """Initialize the store.

        Args:
            preferences: Key-value store that persists keys and cursor
            default_keys: Keys used to seed an empty set on load()
        """
        self.preferences = preferences
        self.default_keys = list(default_keys)
        self._api_keys: List[str] = []
        self._current_index = 0

    @property
    def keys(self) -> List[str]:
        return list(self._api_keys)

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def key_count(self) -> int:
        return len(self._api_keys)

    @property
    def has_keys(self) -> bool:
        return bool(self._api_keys)

    @property
    def current_key(self) -> Optional[str]:
        """The key the next call to next_key() returns, without rotating."""
        if not self._api_keys:
            return None
        return self._api_keys[self._current_index]

    def load(self) -> None:
        """Restore keys and cursor, seeding the configured defaults if empty."""
        stored = self.preferences.get(KEYS_PREFERENCE)
        if not isinstance(stored, list):
            stored = []
        self._api_keys = [k for k in stored if isinstance(k, str)]

        try:
            self._current_index = int(self.preferences.get(INDEX_PREFERENCE, 0))
        except (TypeError, ValueError):
            self._current_index = 0

        if not self._api_keys and self.default_keys:
            logger.info(f"Seeding {len(self.default_keys)} configured API key(s)")
            for key in self.default_keys:
                self.add_key(key)

        if not 0 <= self._current_index < max(len(self._api_keys), 1):
            self._current_index = 0

        logger.info(f"Loaded {len(self._api_keys)} API key(s), rotation index {self._current_index}")

    def next_key(self) -> Optional[str]:
        """Return the key at the cursor and advance the cursor."""
        if not self._api_keys:
            return None

        key = self._api_keys[self._current_index]
        self._current_index = (self._current_index + 1) % len(self._api_keys)
        self._save_index()
        return key

    def add_key(self, key: str) -> None:
        """Append a key unless it is blank or already present."""
        key = key.strip()
        if not key or key in self._api_keys:
            return

        self._api_keys.append(key)
        self._save_keys()
        logger.info(f"API key added ({len(self._api_keys)} total)")

    def remove_key(self, index: int) -> None:
        """Remove the key at ``index``; out-of-range indices are ignored."""
        if index < 0 or index >= len(self._api_keys):
            return

        del self._api_keys[index]

        if self._current_index >= len(self._api_keys):
            self._current_index = len(self._api_keys) - 1 if self._api_keys else 0

        self._save_keys()
        self._save_index()
        logger.info(f"API key removed ({len(self._api_keys)} remaining)")

    def _save_keys(self) -> None:
        self.preferences.set(KEYS_PREFERENCE, list(self._api_keys))

    def _save_index(self) -> None:
        self.preferences.set(INDEX_PREFERENCE, self._current_index)
