"""
Filesystem locations used when the config does not override them
"""

import os
from pathlib import Path


def get_config_dir() -> Path:
    """~/.config/worklens, or $WORKLENS_HOME when set"""
    override = os.getenv("WORKLENS_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "worklens"


def get_data_dir() -> Path:
    data_dir = get_config_dir()
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def get_db_path() -> Path:
    return get_data_dir() / "worklens.db"
