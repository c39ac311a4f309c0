"""Data records exchanged between the cache, the remote adapters and callers."""
from __future__ import annotations

import mimetypes
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

# Keys written by earlier clients; kept so existing caches stay readable.
_PATIENT_KEYS: Tuple[Tuple[str, str], ...] = (
    ("id", "id"),
    ("last_name", "nom"),
    ("first_name", "prenom"),
    ("phone", "telephone"),
    ("patient_folder_id", "patientFolderId"),
    ("bilans_folder_id", "bilansFolderId"),
    ("seances_folder_id", "seancesFolderId"),
    ("journal_id", "journalSheetId"),
    ("created_at", "createdAt"),
)


def utc_now_iso() -> str:
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    candidate = value
    if value.endswith("Z"):
        candidate = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    else:
        parsed = parsed.astimezone(timezone.utc)
    return parsed


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


@dataclass
class Patient:
    id: str
    last_name: str
    first_name: str
    phone: str = ""
    patient_folder_id: str = ""
    bilans_folder_id: str = ""
    seances_folder_id: str = ""
    journal_id: str = ""
    created_at: str = ""
    extra: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def identity(self) -> Tuple[str, str]:
        """Deduplication key: the case-insensitive (last name, first name) pair."""

        return identity_key(self.last_name, self.first_name)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Patient":
        values = {attr: _text(payload.get(key)) for attr, key in _PATIENT_KEYS}
        known = {key for _, key in _PATIENT_KEYS}
        extra = {key: value for key, value in payload.items() if key not in known}
        return cls(extra=extra, **values)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(self.extra)
        for attr, key in _PATIENT_KEYS:
            payload[key] = getattr(self, attr)
        return payload


def identity_key(last_name: str, first_name: str) -> Tuple[str, str]:
    return ((last_name or "").strip().casefold(), (first_name or "").strip().casefold())


@dataclass(frozen=True)
class RemoteFolder:
    id: str
    name: str


@dataclass(frozen=True)
class RemoteFile:
    """A Drive file as returned by ``files.list``."""

    id: str
    name: str
    created_at: str = ""
    view_url: str = ""
    download_url: str = ""
    thumbnail_url: str = ""
    mime_type: str = ""

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "RemoteFile":
        return cls(
            id=_text(payload.get("id")),
            name=_text(payload.get("name")),
            created_at=_text(payload.get("createdTime")),
            view_url=_text(payload.get("webViewLink")),
            download_url=_text(payload.get("webContentLink")),
            thumbnail_url=_text(payload.get("thumbnailLink")),
            mime_type=_text(payload.get("mimeType")),
        )


@dataclass(frozen=True)
class PhotoUpload:
    """Image content waiting to be uploaded."""

    content: bytes
    mime_type: str = "image/jpeg"
    extension: str = "jpg"

    @classmethod
    def from_path(cls, path: Path | str) -> "PhotoUpload":
        source = Path(path)
        mime_type = mimetypes.guess_type(source.name)[0] or "image/jpeg"
        extension = source.suffix.lstrip(".").lower() or "jpg"
        return cls(content=source.read_bytes(), mime_type=mime_type, extension=extension)


@dataclass
class BilanMeta:
    """Explicit grouping of uploaded photos recorded in the side-channel index."""

    id: str
    title: str
    date: str
    file_ids: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "BilanMeta":
        raw_ids = payload.get("fileIds") or []
        if not isinstance(raw_ids, (list, tuple)):
            raw_ids = []
        return cls(
            id=_text(payload.get("id")),
            title=_text(payload.get("title")),
            date=_text(payload.get("date") or payload.get("createdAt")),
            file_ids=[_text(item) for item in raw_ids if item],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "date": self.date,
            "fileIds": list(self.file_ids),
        }


@dataclass
class Bilan:
    id: str
    title: str
    created_at: str
    files: List[RemoteFile]
    source: str = "inferred"

    @property
    def cover(self) -> Optional[RemoteFile]:
        return self.files[0] if self.files else None

    @property
    def display_title(self) -> str:
        if self.title:
            return self.title
        cover = self.cover
        return cover.name if cover else ""


@dataclass(frozen=True)
class JournalRow:
    date: str
    file_name: str
    description: str
    row_index: int


@dataclass
class Seance:
    date: str
    file_name: str
    description: str
    row_index: int
    file: Optional[RemoteFile] = None
    local_thumbnail: Optional[str] = None

    @property
    def has_image(self) -> bool:
        return self.file is not None


__all__ = [
    "Bilan",
    "BilanMeta",
    "JournalRow",
    "Patient",
    "PhotoUpload",
    "RemoteFile",
    "RemoteFolder",
    "Seance",
    "identity_key",
    "parse_timestamp",
    "utc_now_iso",
]
