"""Google Drive API helpers for the patient folder hierarchy."""
from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httplib2
from google.auth.exceptions import RefreshError, TransportError
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from kine import naming
from kine.errors import AuthMissing, RemoteRejected, RemoteUnavailable
from kine.models import RemoteFile, RemoteFolder
from kine.settings import (
    BILANS_FOLDER_NAME,
    PATIENTS_FOLDER_NAME,
    ROOT_FOLDER_NAME,
    SEANCES_FOLDER_NAME,
)

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
SPREADSHEET_MIME_TYPE = "application/vnd.google-apps.spreadsheet"
FILE_FIELDS = "id, name, createdTime, webViewLink, webContentLink, thumbnailLink, mimeType"


def execute_request(request, action: str) -> Any:
    """Run ``request.execute()`` translating failures into the error taxonomy."""

    try:
        return request.execute()
    except HttpError as exc:
        status = getattr(exc.resp, "status", None)
        message = getattr(exc, "reason", None) or str(exc)
        logger.error("Google API rejected %s (status %s): %s", action, status, message)
        raise RemoteRejected(f"{action} failed: {message}", status=status) from exc
    except RefreshError as exc:
        logger.warning("Google token refresh failed during %s: %s", action, exc)
        raise AuthMissing("The Google session has expired. Sign in again.") from exc
    except (TransportError, httplib2.HttpLib2Error, OSError) as exc:
        logger.error("Google unreachable during %s: %s", action, exc)
        raise RemoteUnavailable(f"{action} failed: Google could not be reached ({exc})") from exc


def escape_query_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


@dataclass(frozen=True)
class PatientFolders:
    """Folder ids produced by :func:`ensure_patient_folders`."""

    patient_folder_id: str
    bilans_folder_id: str
    seances_folder_id: str
    patient_folder_name: str


class DriveStore:
    """Folder and file operations on Google Drive.

    ``upload`` and ``find_or_create_folder`` are not idempotent under retry:
    callers must not blindly repeat them.
    """

    def __init__(self, service) -> None:
        self._service = service

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def _list(self, query: str, fields: str, *, order_by: Optional[str] = None) -> List[Dict[str, Any]]:
        files: List[Dict[str, Any]] = []
        page_token: Optional[str] = None
        while True:
            params: Dict[str, Any] = {
                "q": query,
                "spaces": "drive",
                "fields": f"nextPageToken, files({fields})",
            }
            if order_by:
                params["orderBy"] = order_by
            if page_token:
                params["pageToken"] = page_token
            response = execute_request(self._service.files().list(**params), "Listing Drive files")
            files.extend(response.get("files", []))
            page_token = response.get("nextPageToken")
            if not page_token:
                break
        return files

    def find_file(self, name: str, parent_id: Optional[str], mime_type: Optional[str] = None) -> Optional[str]:
        """Return the id of the first non-trashed child named ``name``."""

        parts = [
            f"name = '{escape_query_value(name)}'",
            f"'{parent_id or 'root'}' in parents",
            "trashed = false",
        ]
        if mime_type:
            parts.append(f"mimeType = '{mime_type}'")
        files = self._list(" and ".join(parts), "id, name")
        if files:
            return files[0]["id"]
        return None

    def find_or_create_folder(self, name: str, parent_id: Optional[str] = None) -> str:
        """Ensure that a folder with the given name exists and return its ID."""

        existing = self.find_file(name, parent_id, FOLDER_MIME_TYPE)
        if existing:
            return existing

        metadata = {
            "name": name,
            "mimeType": FOLDER_MIME_TYPE,
            "parents": [parent_id or "root"],
        }
        created = execute_request(
            self._service.files().create(body=metadata, fields="id"),
            f"Creating folder {name}",
        )
        logger.info("Created Drive folder %s (%s)", name, created["id"])
        return created["id"]

    def list_sub_folders(self, parent_id: str) -> List[RemoteFolder]:
        query = f"'{parent_id}' in parents and mimeType = '{FOLDER_MIME_TYPE}' and trashed = false"
        return [
            RemoteFolder(id=item["id"], name=item.get("name", ""))
            for item in self._list(query, "id, name")
        ]

    def list_files(self, parent_id: str) -> List[RemoteFile]:
        """List non-folder files, most recently created first."""

        query = f"'{parent_id}' in parents and mimeType != '{FOLDER_MIME_TYPE}' and trashed = false"
        files = [
            RemoteFile.from_api(item)
            for item in self._list(query, FILE_FIELDS, order_by="createdTime desc")
        ]
        files.sort(key=lambda item: item.created_at, reverse=True)
        return files

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def upload(
        self,
        content: bytes,
        parent_id: str,
        name: str,
        mime_type: str = "image/jpeg",
    ) -> RemoteFile:
        media = MediaIoBaseUpload(io.BytesIO(content), mimetype=mime_type, resumable=False)
        metadata = {"name": name, "parents": [parent_id]}
        created = execute_request(
            self._service.files().create(body=metadata, media_body=media, fields=FILE_FIELDS),
            f"Uploading {name}",
        )
        logger.info("Uploaded %s (%d bytes) to folder %s", name, len(content), parent_id)
        return RemoteFile.from_api(created)

    def download(self, file_id: str) -> bytes:
        return execute_request(
            self._service.files().get_media(fileId=file_id),
            f"Downloading file {file_id}",
        )

    def rename(self, file_id: str, new_name: str) -> None:
        execute_request(
            self._service.files().update(fileId=file_id, body={"name": new_name}, fields="id, name"),
            f"Renaming {file_id}",
        )
        logger.info("Renamed Drive item %s to %s", file_id, new_name)

    def delete(self, file_id: str) -> None:
        """Delete a file, or a folder together with everything below it."""

        execute_request(self._service.files().delete(fileId=file_id), f"Deleting {file_id}")
        logger.info("Deleted Drive item %s", file_id)

    def move(self, file_id: str, new_parent_id: str) -> None:
        info = execute_request(
            self._service.files().get(fileId=file_id, fields="parents"),
            f"Reading parents of {file_id}",
        )
        previous = ",".join(info.get("parents", []))
        execute_request(
            self._service.files().update(
                fileId=file_id,
                addParents=new_parent_id,
                removeParents=previous,
                fields="id, parents",
            ),
            f"Moving {file_id}",
        )


def patients_root(store: DriveStore, drive_folder_id: Optional[str] = None) -> str:
    """Return the id of ``KINE_APP/Patients``, creating missing folders."""

    app_root = store.find_or_create_folder(ROOT_FOLDER_NAME, drive_folder_id)
    return store.find_or_create_folder(PATIENTS_FOLDER_NAME, app_root)


def ensure_patient_folders(
    store: DriveStore,
    last_name: str,
    first_name: str,
    phone: str = "",
    *,
    drive_folder_id: Optional[str] = None,
) -> PatientFolders:
    """Ensure the expected folder hierarchy exists for a patient."""

    root_id = patients_root(store, drive_folder_id)
    folder_name = naming.patient_folder_name(last_name, first_name, phone)
    patient_id = store.find_or_create_folder(folder_name, root_id)
    bilans_id = store.find_or_create_folder(BILANS_FOLDER_NAME, patient_id)
    seances_id = store.find_or_create_folder(SEANCES_FOLDER_NAME, patient_id)
    return PatientFolders(
        patient_folder_id=patient_id,
        bilans_folder_id=bilans_id,
        seances_folder_id=seances_id,
        patient_folder_name=folder_name,
    )


__all__ = [
    "DriveStore",
    "FOLDER_MIME_TYPE",
    "PatientFolders",
    "SPREADSHEET_MIME_TYPE",
    "ensure_patient_folders",
    "escape_query_value",
    "execute_request",
    "patients_root",
]
