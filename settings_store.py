"""
Local Settings Store for MiCasa Gateway
Small JSON key-value file for the backend address and the session token.
"""
import logging
import json
import os
from typing import Any, Dict, Optional

logger = logging.getLogger("settings_store")

SERVER_URL_KEY = "server_url"
SESSION_TOKEN_KEY = "session_token"


def normalize_server_url(url: str) -> str:
    """
    Normalize a backend address the way the settings screen does:
    drop a trailing slash and make sure it ends in /api.
    """
    formatted = str(url).strip().rstrip("/")
    if not formatted.endswith("/api"):
        formatted += "/api"
    return formatted


class SettingsStore:
    """
    Persists a handful of local settings.
    Every write is flushed to disk immediately.
    """

    def __init__(self, storage_path: str = "settings.json"):
        self.storage_path = storage_path
        self._data: Dict[str, Any] = {}
        self._load()

    def _load(self):
        """Load settings from storage."""
        if os.path.exists(self.storage_path):
            try:
                with open(self.storage_path, "r") as f:
                    data = json.load(f)
                self._data = data if isinstance(data, dict) else {}
                logger.info(f"Loaded {len(self._data)} local settings")
            except Exception as e:
                logger.error(f"Failed to load settings: {e}")
                self._data = {}
        else:
            self._data = {}

    def _save(self):
        """Persist settings to storage."""
        try:
            with open(self.storage_path, "w") as f:
                json.dump(self._data, f, indent=2, sort_keys=True)
        except Exception as e:
            logger.error(f"Failed to save settings: {e}")

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any):
        self._data[key] = value
        self._save()

    def remove(self, key: str) -> bool:
        if key not in self._data:
            return False
        del self._data[key]
        self._save()
        return True

    @property
    def server_url(self) -> Optional[str]:
        return self._data.get(SERVER_URL_KEY)

    def set_server_url(self, url: str) -> str:
        """Normalize and store the backend address."""
        formatted = normalize_server_url(url)
        self.set(SERVER_URL_KEY, formatted)
        logger.info(f"Server configured: {formatted}")
        return formatted

    @property
    def session_token(self) -> Optional[str]:
        return self._data.get(SESSION_TOKEN_KEY)

    def set_session_token(self, token: Optional[str]):
        if token:
            self.set(SESSION_TOKEN_KEY, token)
        else:
            self.remove(SESSION_TOKEN_KEY)


# Singleton instance
_settings_store: Optional[SettingsStore] = None


def get_settings_store(storage_path: str = "settings.json") -> SettingsStore:
    """Get or create the singleton settings store."""
    global _settings_store
    if _settings_store is None:
        _settings_store = SettingsStore(storage_path)
    return _settings_store
