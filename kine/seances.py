"""Session journal operations and the journal/photo merge."""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from kine import local_store, naming
from kine.drive_api import DriveStore
from kine.errors import KineError, ValidationError
from kine.local_store import LocalStore
from kine.models import JournalRow, Patient, PhotoUpload, RemoteFile, Seance
from kine.previews import try_create_preview
from kine.settings import DEFAULT_PREVIEW_WIDTH
from kine.sheets_client import JournalStore, format_journal_date

logger = logging.getLogger(__name__)

Today = Callable[[], date]


def merge_seances(
    journal_rows: Sequence[JournalRow],
    remote_files: Sequence[RemoteFile],
    previews: Optional[Mapping[str, str]] = None,
) -> List[Seance]:
    """Join journal rows with the photo of the same name.

    Rows keep their order (most recent first). When several files share a
    name the first one listed wins; rows without a matching file are kept
    without imagery.
    """

    files_by_name: Dict[str, RemoteFile] = {}
    for remote in remote_files:
        files_by_name.setdefault(remote.name, remote)

    previews = previews or {}
    seances: List[Seance] = []
    for row in journal_rows:
        remote = files_by_name.get(row.file_name) if row.file_name else None
        seances.append(
            Seance(
                date=row.date,
                file_name=row.file_name,
                description=row.description,
                row_index=row.row_index,
                file=remote,
                local_thumbnail=previews.get(remote.id) if remote else None,
            )
        )
    return seances


def load_seances(
    drive: DriveStore,
    journals: JournalStore,
    store: LocalStore,
    patient: Patient,
) -> List[Seance]:
    rows = journals.read_rows(patient.journal_id)
    files = drive.list_files(patient.seances_folder_id)
    return merge_seances(rows, files, local_store.load_previews(store, patient.id))


def parse_entry_date(value: str) -> date:
    """Validate a journal date (``YYYY-MM-DD``)."""

    try:
        return datetime.strptime((value or "").strip(), "%Y-%m-%d").date()
    except ValueError as exc:
        raise ValidationError(f"Date invalide : {value!r} (format attendu AAAA-MM-JJ)") from exc


def _store_preview(
    store: LocalStore,
    patient: Patient,
    remote: RemoteFile,
    photo: PhotoUpload,
    preview_width: int,
) -> None:
    data_url = try_create_preview(photo.content, preview_width)
    if data_url and remote.id:
        local_store.save_preview(store, patient.id, remote.id, data_url)


def add_seance(
    drive: DriveStore,
    journals: JournalStore,
    store: LocalStore,
    patient: Patient,
    photo: Optional[PhotoUpload],
    description: str = "",
    *,
    today: Optional[Today] = None,
    preview_width: int = DEFAULT_PREVIEW_WIDTH,
) -> RemoteFile:
    """Upload the session photo, then append its journal row.

    If the append fails the photo stays on Drive without a journal row.
    """

    if photo is None or not photo.content:
        raise ValidationError("Veuillez prendre une photo")

    day = (today or date.today)()
    file_name = naming.date_filename(day, photo.extension)
    remote = drive.upload(photo.content, patient.seances_folder_id, file_name, photo.mime_type)
    try:
        journals.append_row(patient.journal_id, format_journal_date(day), file_name, description)
    except KineError:
        logger.error(
            "Patient %s: photo %s uploaded (%s) but the journal row could not be written",
            patient.id,
            file_name,
            remote.id,
        )
        raise
    _store_preview(store, patient, remote, photo, preview_width)
    logger.info("Patient %s: session %s added", patient.id, file_name)
    return remote


def update_seance(
    drive: DriveStore,
    journals: JournalStore,
    store: LocalStore,
    patient: Patient,
    seance: Seance,
    *,
    entry_date: Optional[str] = None,
    description: Optional[str] = None,
    photo: Optional[PhotoUpload] = None,
    preview_width: int = DEFAULT_PREVIEW_WIDTH,
) -> Seance:
    """Rewrite the journal row of ``seance`` in place.

    ``seance.row_index`` must come from a recent read of the journal.
    A replaced photo is uploaded first; the old one is removed afterwards on a
    best-effort basis.
    """

    new_date = seance.date if entry_date is None else entry_date
    parsed_date = parse_entry_date(new_date)
    new_description = seance.description if description is None else description
    new_file_name = seance.file_name
    new_file = seance.file

    if photo is not None:
        if not photo.content:
            raise ValidationError("Veuillez prendre une photo")
        new_file_name = naming.date_filename(parsed_date, photo.extension)
        new_file = drive.upload(photo.content, patient.seances_folder_id, new_file_name, photo.mime_type)

    journals.update_row(
        patient.journal_id,
        seance.row_index,
        format_journal_date(parsed_date),
        new_file_name,
        new_description,
    )

    thumbnail = seance.local_thumbnail
    if photo is not None and new_file is not None:
        old_file = seance.file
        if old_file is not None and old_file.id != new_file.id:
            try:
                drive.delete(old_file.id)
            except KineError as exc:
                logger.warning("Replaced photo %s could not be deleted: %s", old_file.id, exc)
            local_store.drop_preview(store, patient.id, old_file.id)
        _store_preview(store, patient, new_file, photo, preview_width)
        thumbnail = local_store.load_previews(store, patient.id).get(new_file.id)

    logger.info("Patient %s: journal row %s updated", patient.id, seance.row_index)
    return Seance(
        date=format_journal_date(parsed_date),
        file_name=new_file_name,
        description=new_description,
        row_index=seance.row_index,
        file=new_file,
        local_thumbnail=thumbnail,
    )


def delete_seance(
    drive: DriveStore,
    journals: JournalStore,
    store: LocalStore,
    patient: Patient,
    seance: Seance,
) -> None:
    """Remove the journal row, then the photo on a best-effort basis."""

    journals.delete_row(patient.journal_id, seance.row_index)
    if seance.file is not None:
        try:
            drive.delete(seance.file.id)
        except KineError as exc:
            logger.warning(
                "Patient %s: photo %s of deleted session could not be removed: %s",
                patient.id,
                seance.file.id,
                exc,
            )
        local_store.drop_preview(store, patient.id, seance.file.id)
    logger.info("Patient %s: journal row %s deleted", patient.id, seance.row_index)


def find_seance(seances: Sequence[Seance], row_index: int) -> Optional[Seance]:
    for seance in seances:
        if seance.row_index == row_index:
            return seance
    return None


__all__ = [
    "add_seance",
    "delete_seance",
    "find_seance",
    "load_seances",
    "merge_seances",
    "parse_entry_date",
    "update_seance",
]
