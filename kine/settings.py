"""Application configuration helpers."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Dict, Optional

from kine import app_paths

logger = logging.getLogger(__name__)


# Remote layout. These names are load-bearing for data written by earlier clients.
ROOT_FOLDER_NAME = "KINE_APP"
PATIENTS_FOLDER_NAME = "Patients"
BILANS_FOLDER_NAME = "Bilans"
SEANCES_FOLDER_NAME = "Seances"
JOURNAL_SHEET_NAME = "journal"
JOURNAL_TAB_TITLE = "Séances"
JOURNAL_HEADERS = ("Date", "Nom du fichier", "Description")

SCOPES = (
    "https://www.googleapis.com/auth/drive.file",
    "https://www.googleapis.com/auth/drive",
    "https://www.googleapis.com/auth/spreadsheets",
)

SETTINGS_PATH = str(app_paths.data_path("settings.json"))
DEFAULT_CLIENT_SECRET_PATH = os.getenv(
    "KINE_CLIENT_SECRET_PATH",
    str(app_paths.credentials_path("client_secret.json")),
)
DEFAULT_TOKEN_PATH = os.getenv("KINE_TOKEN_PATH", str(app_paths.tokens_path("token.json")))
DEFAULT_CACHE_PATH = os.getenv("KINE_CACHE_PATH", str(app_paths.cache_path("local_store.json")))
DEFAULT_DRIVE_FOLDER_ID = os.getenv("KINE_DRIVE_FOLDER_ID", "")
DEFAULT_SYNC_INTERVAL = 300
DEFAULT_PREVIEW_WIDTH = 600


@dataclass
class KineSettings:
    client_secret_path: str = DEFAULT_CLIENT_SECRET_PATH
    token_path: str = DEFAULT_TOKEN_PATH
    cache_path: str = DEFAULT_CACHE_PATH
    # Parent of KINE_APP; empty means "My Drive" root.
    drive_folder_id: str = DEFAULT_DRIVE_FOLDER_ID
    sync_interval_seconds: int = DEFAULT_SYNC_INTERVAL
    preview_max_width: int = DEFAULT_PREVIEW_WIDTH

    @property
    def drive_parent(self) -> Optional[str]:
        return self.drive_folder_id or None

    def to_json(self) -> Dict[str, object]:
        return {
            "client_secret_path": self.client_secret_path,
            "token_path": self.token_path,
            "cache_path": self.cache_path,
            "drive_folder_id": self.drive_folder_id,
            "sync_interval_seconds": self.sync_interval_seconds,
            "preview_max_width": self.preview_max_width,
        }


def _default_payload() -> Dict[str, object]:
    return KineSettings().to_json()


def _ensure_settings_file(path: str) -> Dict[str, object]:
    defaults = _default_payload()
    if not os.path.exists(path):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(defaults, handle, indent=2)
        return defaults

    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Settings file %s could not be read: %s", path, exc)
        return defaults
    if not isinstance(data, dict):
        return defaults

    merged: Dict[str, object] = dict(defaults)
    for key, value in data.items():
        if key not in defaults:
            continue
        if key == "sync_interval_seconds":
            try:
                merged[key] = max(30, min(3600, int(value)))
            except (TypeError, ValueError):
                merged[key] = defaults[key]
        elif key == "preview_max_width":
            try:
                merged[key] = max(64, int(value))
            except (TypeError, ValueError):
                merged[key] = defaults[key]
        elif isinstance(value, str):
            merged[key] = value
    return merged


def _env_override(payload: Dict[str, object], key: str, env_var: str) -> None:
    value = os.getenv(env_var)
    if value:
        payload[key] = value


def load_settings(path: str = SETTINGS_PATH) -> KineSettings:
    data = _ensure_settings_file(path)
    _env_override(data, "client_secret_path", "KINE_CLIENT_SECRET_PATH")
    _env_override(data, "token_path", "KINE_TOKEN_PATH")
    _env_override(data, "cache_path", "KINE_CACHE_PATH")
    _env_override(data, "drive_folder_id", "KINE_DRIVE_FOLDER_ID")
    return KineSettings(
        client_secret_path=str(data["client_secret_path"]),
        token_path=str(data["token_path"]),
        cache_path=str(data["cache_path"]),
        drive_folder_id=str(data["drive_folder_id"]),
        sync_interval_seconds=int(data["sync_interval_seconds"]),
        preview_max_width=int(data["preview_max_width"]),
    )


def save_settings(settings: KineSettings, path: str = SETTINGS_PATH) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(settings.to_json(), handle, indent=2)


__all__ = [
    "BILANS_FOLDER_NAME",
    "JOURNAL_HEADERS",
    "JOURNAL_SHEET_NAME",
    "JOURNAL_TAB_TITLE",
    "KineSettings",
    "PATIENTS_FOLDER_NAME",
    "ROOT_FOLDER_NAME",
    "SCOPES",
    "SEANCES_FOLDER_NAME",
    "load_settings",
    "save_settings",
]
