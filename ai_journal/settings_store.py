from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import fields
from pathlib import Path

from .errors import ValidationError
from .models import LOCAL_API_FORMATS, Configuration

SETTING_KEYS: tuple[str, ...] = tuple(f.name for f in fields(Configuration))
_BOOL_KEYS = {"use_local_llm"}
_SECRET_KEYS = {"official_openai_api_key", "gemini_api_key", "compatible_api_key"}


class SettingsStore:
    """Key-value settings persisted in SQLite, read as Configuration snapshots."""

    def __init__(self, db_file: Path):
        self._db_file = Path(db_file)
        self._db_file.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_file, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _connection(self):
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._lock, self._connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS app_settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )
            conn.commit()

    def get_setting(self, key: str, default: str | None = None) -> str | None:
        with self._lock, self._connection() as conn:
            row = conn.execute(
                "SELECT value FROM app_settings WHERE key = ?",
                (key,),
            ).fetchone()
        if row is None:
            return default
        return str(row["value"])

    def set_setting(self, key: str, value: str) -> None:
        with self._lock, self._connection() as conn:
            conn.execute(
                """
                INSERT INTO app_settings(key, value)
                VALUES(?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, value),
            )
            conn.commit()

    def load(self) -> Configuration:
        defaults = Configuration()
        values: dict[str, object] = {}
        for key in SETTING_KEYS:
            raw = self.get_setting(key)
            if raw is None:
                continue
            values[key] = raw == "1" if key in _BOOL_KEYS else raw
        if values.get("local_llm_api_format") not in (None, *LOCAL_API_FORMATS):
            values["local_llm_api_format"] = defaults.local_llm_api_format
        return defaults.with_changes(**values)

    def save(self, config: Configuration) -> None:
        for key in SETTING_KEYS:
            value = getattr(config, key)
            self.set_setting(key, ("1" if value else "0") if key in _BOOL_KEYS else str(value))

    def update(self, **changes: str) -> Configuration:
        """Apply textual changes (as typed on the command line) and save."""
        parsed: dict[str, object] = {}
        for key, raw in changes.items():
            if key not in SETTING_KEYS:
                raise ValidationError(f"Unknown setting: '{key}'. Known settings: {', '.join(SETTING_KEYS)}")
            if key in _BOOL_KEYS:
                lowered = raw.strip().lower()
                if lowered not in {"1", "0", "true", "false", "on", "off", "yes", "no"}:
                    raise ValidationError(f"Setting '{key}' expects on/off, got '{raw}'.")
                parsed[key] = lowered in {"1", "true", "on", "yes"}
            elif key == "local_llm_api_format":
                if raw not in LOCAL_API_FORMATS:
                    raise ValidationError(
                        f"Invalid local LLM API format: '{raw}'. Must be one of: {', '.join(LOCAL_API_FORMATS)}"
                    )
                parsed[key] = raw
            else:
                parsed[key] = raw.strip()
        config = self.load().with_changes(**parsed)
        self.save(config)
        return config


def masked(config: Configuration) -> dict[str, str]:
    """Settings for display, with API keys reduced to their last four characters."""
    shown: dict[str, str] = {}
    for key in SETTING_KEYS:
        value = getattr(config, key)
        if key in _SECRET_KEYS:
            shown[key] = f"...{value[-4:]}" if value else "(not set)"
        elif key in _BOOL_KEYS:
            shown[key] = "on" if value else "off"
        else:
            shown[key] = str(value) or "(not set)"
    return shown
