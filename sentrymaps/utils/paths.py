"""Where sentrymaps keeps recovered source maps and its settings file."""

import os
import tempfile
from pathlib import Path
from typing import Optional

DATA_DIR_ENV = "SENTRYMAPS_DATA_DIR"
SETTINGS_ENV = "SENTRYMAPS_SETTINGS"
DEFAULT_DATA_DIR_NAME = "SentryMapsData"
SETTINGS_FILE_NAME = "settings.json"


def _path_from_env(name: str) -> Optional[Path]:
    value = os.environ.get(name, "").strip()
    return Path(value).expanduser() if value else None


def get_data_directory() -> Path:
    """Root for session directories; $SENTRYMAPS_DATA_DIR or ~/SentryMapsData."""
    return _path_from_env(DATA_DIR_ENV) or Path.home() / DEFAULT_DATA_DIR_NAME


def ensure_data_directory(data_dir: Optional[Path] = None) -> Path:
    """Create data_dir (default: get_data_directory()) and check it accepts files.

    Raises RuntimeError when the directory cannot be created or written,
    so the CLI fails before attaching to any tab.
    """
    data_dir = Path(data_dir) if data_dir else get_data_directory()
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryFile(dir=data_dir):
            pass
    except OSError as e:
        raise RuntimeError(f"Data directory {data_dir} is not writable: {e}")
    return data_dir


def get_settings_path(data_dir: Optional[Path] = None) -> Path:
    """$SENTRYMAPS_SETTINGS, else settings.json inside data_dir."""
    env_path = _path_from_env(SETTINGS_ENV)
    if env_path:
        return env_path
    return Path(data_dir or get_data_directory()) / SETTINGS_FILE_NAME
