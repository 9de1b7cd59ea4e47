from __future__ import annotations

import os
from pathlib import Path

APP_DIR_NAME = "AIReflectionJournal"
XDG_DIR_NAME = "ai-reflection-journal"
HOME_ENV = "AI_JOURNAL_HOME"


def data_directory() -> Path:
    override = os.environ.get(HOME_ENV)
    if override:
        return Path(override)
    if os.name == "nt":
        local_appdata = os.environ.get("LOCALAPPDATA")
        base = Path(local_appdata) if local_appdata else Path.home() / "AppData" / "Local"
        return base / APP_DIR_NAME
    xdg = os.environ.get("XDG_DATA_HOME")
    base = Path(xdg) if xdg else Path.home() / ".local" / "share"
    return base / XDG_DIR_NAME


def settings_path() -> Path:
    return data_directory() / "settings.sqlite3"


def ensure_directories() -> None:
    data_directory().mkdir(parents=True, exist_ok=True)
