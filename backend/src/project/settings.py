"""Persisted user settings: currently only the suggestion API key."""

import json
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

API_KEY_FIELD = "geminiApiKey"


def default_settings_path() -> str:
    return os.environ.get(
        "BACKDROP_SETTINGS_PATH",
        str(Path.home() / ".backdrop" / "settings.json"),
    )


class SettingsStore:
    """JSON key/value file, loaded once and rewritten on every change."""

    def __init__(self, path: str | None = None) -> None:
        self.path = path or default_settings_path()
        self._data: dict = self._read()

    def _read(self) -> dict:
        try:
            with open(self.path) as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable settings file: %s", type(e).__name__)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring settings file with non-object root")
            return {}
        return data

    def _write(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        tmp = self.path + ".tmp"
        # Contains a credential: owner-only permissions
        old_umask = os.umask(0o077)
        try:
            with open(tmp, "w") as f:
                json.dump(self._data, f, indent=2)
            os.replace(tmp, self.path)
        finally:
            os.umask(old_umask)

    @property
    def api_key(self) -> str:
        value = self._data.get(API_KEY_FIELD, "")
        return value if isinstance(value, str) else ""

    @property
    def api_key_available(self) -> bool:
        return self.api_key.strip() != ""

    def set_api_key(self, value: str | None) -> None:
        """Save the trimmed key; blank removes the persisted entry."""
        trimmed = (value or "").strip()
        if trimmed:
            self._data[API_KEY_FIELD] = trimmed
        else:
            self._data.pop(API_KEY_FIELD, None)
        self._write()
