"""Filesystem locations used by the applier."""
from __future__ import annotations

import os
from pathlib import Path

APP_DIR_NAME = "WinConfig"
LOG_FILE_NAME = "winconfig.log"
SETTINGS_FILE_NAME = "settings.json"


def get_application_directory() -> Path:
    program_data = os.environ.get("PROGRAMDATA")
    if program_data:
        return Path(program_data) / APP_DIR_NAME
    return Path.home() / f".{APP_DIR_NAME.lower()}"


def default_log_path() -> Path:
    return get_application_directory() / LOG_FILE_NAME


def default_settings_path() -> Path:
    return get_application_directory() / SETTINGS_FILE_NAME
