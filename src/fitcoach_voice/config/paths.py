from __future__ import annotations

import os
import sys
from pathlib import Path

APP_DIR_NAME = "fitcoach-voice"
HOME_ENV_VAR = "FITCOACH_VOICE_HOME"
SETTINGS_FILENAME = "settings.json"


def _platform_config_root() -> Path:
    if sys.platform.startswith("win"):
        base = os.getenv("LOCALAPPDATA") or os.getenv("APPDATA")
        return Path(base) if base else Path.home() / "AppData" / "Local"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support"
    base = os.getenv("XDG_CONFIG_HOME")
    return Path(base) if base else Path.home() / ".config"


def user_config_dir() -> Path:
    """Where settings live. ``FITCOACH_VOICE_HOME`` replaces the per-OS location."""
    override = os.getenv(HOME_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return _platform_config_root() / APP_DIR_NAME


def default_settings_path() -> Path:
    return user_config_dir() / SETTINGS_FILENAME
