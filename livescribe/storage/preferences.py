"""JSON-file key-value store for small application preferences."""

import os
import json
import logging
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Union

logger = logging.getLogger(__name__)


class PreferenceStore:
    """Key-value store persisted as one JSON object on disk.

    Every mutation rewrites the file through a temporary file and an atomic
    rename, so a crash never leaves a half-written document behind.
    """

    def __init__(self, file_path: Union[str, Path]):
        """Initialize the store.

        Args:
            file_path: JSON file holding the preferences; created on first write
        """
        self.file_path = Path(file_path)
        self._lock = threading.Lock()
        self._values: Dict[str, Any] = self._load()
        logger.info(f"PreferenceStore initialized with file: {self.file_path}")

    def _load(self) -> Dict[str, Any]:
        if not self.file_path.exists():
            return {}

        try:
            with open(self.file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Error loading preferences from {self.file_path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.error(f"Ignoring preferences file without a JSON object: {self.file_path}")
            return {}
        return data

    def _save(self) -> None:
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.file_path.parent, suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(self._values, f, indent=2)
            os.replace(tmp_path, self.file_path)
        except Exception:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get(self, key: str, default: Any = None) -> Any:
        """Return the stored value for ``key`` or ``default``."""
        with self._lock:
            return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value and persist immediately."""
        with self._lock:
            self._values[key] = value
            self._save()
        logger.debug(f"Preference '{key}' saved")

    def remove(self, key: str) -> None:
        """Delete ``key`` if present and persist."""
        with self._lock:
            if key not in self._values:
                return
            del self._values[key]
            self._save()
        logger.debug(f"Preference '{key}' removed")
