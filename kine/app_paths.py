"""Centralised helpers for managing application directories."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable

_APP_ENV_VARS: Iterable[str] = ("LOCALAPPDATA", "APPDATA")


def _detect_base_directory() -> Path:
    override = os.environ.get("KINE_APP_DIR")
    if override:
        return Path(override).expanduser().resolve()
    for env_var in _APP_ENV_VARS:
        value = os.environ.get(env_var)
        if value:
            return Path(value).expanduser().resolve() / "KineApp"
    return Path.home().resolve() / ".kine"


APP_DIR: Path = _detect_base_directory()
TOKENS_DIR: Path = APP_DIR / "tokens"
CREDENTIALS_DIR: Path = APP_DIR / "credentials"
CACHE_DIR: Path = APP_DIR / "cache"
LOG_DIR: Path = APP_DIR / "logs"


def ensure_directory(path: Path) -> Path:
    """Ensure that ``path`` exists, returning the :class:`~pathlib.Path`."""

    path.mkdir(parents=True, exist_ok=True)
    return path


def ensure_app_structure() -> None:
    """Create the base directories required for application data."""

    for directory in (APP_DIR, TOKENS_DIR, CREDENTIALS_DIR, CACHE_DIR, LOG_DIR):
        ensure_directory(directory)


def _rooted(base: Path, parts: Iterable[str]) -> Path:
    target = base.joinpath(*parts)
    if target.parent and not target.parent.exists():
        target.parent.mkdir(parents=True, exist_ok=True)
    return target


def data_path(*parts: str) -> Path:
    """Return a path rooted inside :data:`APP_DIR`, creating parent directories."""

    ensure_app_structure()
    return _rooted(APP_DIR, parts)


def tokens_path(*parts: str) -> Path:
    ensure_app_structure()
    return _rooted(TOKENS_DIR, parts)


def credentials_path(*parts: str) -> Path:
    ensure_app_structure()
    return _rooted(CREDENTIALS_DIR, parts)


def cache_path(*parts: str) -> Path:
    ensure_app_structure()
    return _rooted(CACHE_DIR, parts)


def logs_path(*parts: str) -> Path:
    ensure_app_structure()
    return _rooted(LOG_DIR, parts)


__all__ = [
    "APP_DIR",
    "TOKENS_DIR",
    "CREDENTIALS_DIR",
    "CACHE_DIR",
    "LOG_DIR",
    "cache_path",
    "credentials_path",
    "data_path",
    "ensure_app_structure",
    "ensure_directory",
    "logs_path",
    "tokens_path",
]
