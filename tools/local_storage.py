"""
LocalStorage — per-client persisted key/value strings.

Holds what a browser keeps in localStorage: the player identifier and
the storybook page cursor. Never shared; each client profile has its
own file. With no path it lives in memory only.
"""

import json
import logging
import os
from typing import Dict, Optional

logger = logging.getLogger("LocalStorage")

PLAYER_ID_KEY = "dnd_player_id"
STORY_PAGE_KEY = "dnd_storybook_current_page"


class LocalStorage:
    """String key/value store backed by one JSON file."""

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._data: Dict[str, str] = {}
        if path and os.path.exists(path):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    loaded = json.load(f)
                if isinstance(loaded, dict):
                    self._data = {str(k): str(v) for k, v in loaded.items()}
            except (OSError, ValueError) as e:
                # A corrupt profile behaves like a cleared one.
                logger.warning(f"Could not read local storage at {path}: {e}")

    @classmethod
    def for_profile(cls, profile_dir: str, profile: str) -> "LocalStorage":
        return cls(os.path.join(profile_dir, f"{profile}.json"))

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = str(value)
        self._save()

    def remove(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._save()

    def clear(self) -> None:
        self._data.clear()
        self._save()

    def _save(self) -> None:
        if not self.path:
            return
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(self._data, f, indent=2)
