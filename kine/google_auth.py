"""OAuth token handling and Google API service construction."""
from __future__ import annotations

import logging
import os
from typing import Optional, Sequence

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build

from kine.errors import AuthMissing, RemoteUnavailable
from kine.settings import SCOPES, KineSettings

logger = logging.getLogger(__name__)


def _save_token(credentials: Credentials, token_path: str) -> None:
    if not token_path:
        return
    os.makedirs(os.path.dirname(token_path) or ".", exist_ok=True)
    with open(token_path, "w", encoding="utf-8") as handle:
        handle.write(credentials.to_json())


def load_credentials(token_path: str, scopes: Optional[Sequence[str]] = None) -> Credentials:
    """Return valid credentials from ``token_path``, refreshing them if needed.

    Raises :class:`AuthMissing` when no token exists or it cannot be refreshed;
    the caller has to run :func:`login` again.
    """

    scopes = list(scopes or SCOPES)
    if not token_path or not os.path.exists(token_path):
        raise AuthMissing("Not signed in to Google. Run the 'login' command first.")

    credentials = Credentials.from_authorized_user_file(token_path, scopes)
    if credentials.valid:
        return credentials
    if not (credentials.expired and credentials.refresh_token):
        raise AuthMissing("The stored Google token is invalid. Sign in again.")

    try:
        credentials.refresh(Request())
    except RefreshError as exc:
        logger.warning("Token refresh rejected: %s", exc)
        raise AuthMissing("The Google session has expired. Sign in again.") from exc
    except TransportError as exc:
        raise RemoteUnavailable(f"Google could not be reached: {exc}") from exc
    _save_token(credentials, token_path)
    return credentials


def login(settings: KineSettings, scopes: Optional[Sequence[str]] = None) -> Credentials:
    """Run the installed-app consent flow and persist the resulting token."""

    scopes = list(scopes or SCOPES)
    secret_path = settings.client_secret_path
    if not os.path.exists(secret_path):
        raise FileNotFoundError(f"Client secret file not found: {secret_path}")

    flow = InstalledAppFlow.from_client_secrets_file(secret_path, scopes)
    credentials = flow.run_local_server(port=0)
    _save_token(credentials, settings.token_path)
    logger.info("Google token stored in %s", settings.token_path)
    return credentials


def build_drive_service(credentials: Credentials):
    return build("drive", "v3", credentials=credentials, cache_discovery=False)


def build_sheets_service(credentials: Credentials):
    return build("sheets", "v4", credentials=credentials, cache_discovery=False)


__all__ = [
    "build_drive_service",
    "build_sheets_service",
    "load_credentials",
    "login",
]
