"""Grouping of uploaded assessment photos into bilans.

Photos live flat in the patient's ``Bilans`` folder.  Since the multi-photo
form was introduced, every new bilan is also recorded in the per-patient meta
index (``bilans_meta_<patientId>``) which lists its title, date and file ids.
Older uploads, and uploads made from another device, have no meta entry and
are grouped from their file names instead:

``DD_MM_YYYY_<slug>_<index>.<ext>``
    The first three tokens form the date key, the last one is the photo index
    and everything in between is the title slug.  Photos sharing a date key
    and a slug form one bilan.

Anything with fewer than four tokens is a bilan of its own, keyed by the file
id.  A file never belongs to more than one bilan and meta entries always win
over inference.
"""
from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from kine import naming
from kine.drive_api import DriveStore
from kine.errors import ValidationError
from kine.local_store import LocalStore, load_bilans_meta, save_bilans_meta
from kine.models import (
    Bilan,
    BilanMeta,
    Patient,
    PhotoUpload,
    RemoteFile,
    parse_timestamp,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

SOURCE_META = "meta"
SOURCE_INFERRED = "inferred"
MIN_PATTERN_TOKENS = 4

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def _earliest_created(files: Iterable[RemoteFile]) -> Optional[str]:
    earliest: Optional[Tuple[datetime, str]] = None
    for item in files:
        parsed = parse_timestamp(item.created_at)
        if parsed is None:
            continue
        if earliest is None or parsed < earliest[0]:
            earliest = (parsed, item.created_at)
    return earliest[1] if earliest else None


def _sorted_by_name(files: Iterable[RemoteFile]) -> List[RemoteFile]:
    return sorted(files, key=lambda item: (naming.natural_sort_key(item.name), item.name))


def pattern_key(file_name: str) -> Optional[Tuple[str, str]]:
    """Return ``(date_key, slug)`` for pattern-conforming names, else ``None``."""

    tokens = naming.strip_extension(file_name).split(naming.TOKEN_SEPARATOR)
    if len(tokens) < MIN_PATTERN_TOKENS:
        return None
    date_key = naming.TOKEN_SEPARATOR.join(tokens[:3])
    slug = naming.TOKEN_SEPARATOR.join(tokens[3:-1])
    return date_key, slug


def _claimed_groups(
    meta_index: Sequence[BilanMeta],
    files_by_id: Dict[str, RemoteFile],
    claimed: set,
    now: str,
) -> List[Bilan]:
    groups: List[Bilan] = []
    for record in meta_index:
        resolved: List[RemoteFile] = []
        for file_id in record.file_ids:
            remote = files_by_id.get(file_id)
            if remote is None or file_id in claimed:
                continue
            claimed.add(file_id)
            resolved.append(remote)
        if not resolved:
            continue
        groups.append(
            Bilan(
                id=record.id,
                title=record.title,
                created_at=_earliest_created(resolved) or record.date or now,
                files=resolved,
                source=SOURCE_META,
            )
        )
    return groups


def _inferred_groups(files: Iterable[RemoteFile], now: str) -> List[Bilan]:
    buckets: Dict[Tuple[str, str], List[RemoteFile]] = {}
    singles: List[Bilan] = []
    order: List[Tuple[str, str]] = []

    for remote in files:
        key = pattern_key(remote.name)
        if key is None:
            singles.append(
                Bilan(
                    id=remote.id,
                    title=naming.strip_extension(remote.name),
                    created_at=remote.created_at or now,
                    files=[remote],
                    source=SOURCE_INFERRED,
                )
            )
            continue
        if key not in buckets:
            buckets[key] = []
            order.append(key)
        buckets[key].append(remote)

    groups: List[Bilan] = []
    for date_key, slug in order:
        members = _sorted_by_name(buckets[(date_key, slug)])
        groups.append(
            Bilan(
                id=naming.TOKEN_SEPARATOR.join(part for part in (date_key, slug) if part),
                title=slug.replace("-", " "),
                created_at=_earliest_created(members) or now,
                files=members,
                source=SOURCE_INFERRED,
            )
        )
    return groups + singles


def group_bilans(
    remote_files: Sequence[RemoteFile],
    meta_index: Sequence[BilanMeta],
    *,
    now: Optional[str] = None,
) -> List[Bilan]:
    """Group ``remote_files`` into bilans, most recent first.

    Pure function: identical inputs (including ``now``) yield identical output.
    """

    now = now or utc_now_iso()
    files_by_id: Dict[str, RemoteFile] = {}
    for remote in remote_files:
        files_by_id.setdefault(remote.id, remote)

    claimed: set = set()
    groups = _claimed_groups(meta_index, files_by_id, claimed, now)

    seen: set = set()
    unclaimed: List[RemoteFile] = []
    for remote in remote_files:
        if remote.id in claimed or remote.id in seen:
            continue
        seen.add(remote.id)
        unclaimed.append(remote)
    groups.extend(_inferred_groups(unclaimed, now))

    return sorted(
        groups,
        key=lambda bilan: parse_timestamp(bilan.created_at) or _OLDEST,
        reverse=True,
    )


def load_bilans(drive: DriveStore, store: LocalStore, patient: Patient) -> List[Bilan]:
    files = drive.list_files(patient.bilans_folder_id)
    meta = load_bilans_meta(store, patient.id)
    bilans = group_bilans(files, meta)
    logger.debug(
        "Patient %s: %d files grouped into %d bilans", patient.id, len(files), len(bilans)
    )
    return bilans


def create_bilan(
    drive: DriveStore,
    store: LocalStore,
    patient: Patient,
    title: str,
    photos: Sequence[PhotoUpload],
    *,
    today: Optional[Callable[[], date]] = None,
) -> Bilan:
    """Upload ``photos`` as one bilan and record it in the meta index.

    Photos are uploaded one after the other. If an upload fails the photos
    already sent stay on Drive; their names follow the bilan pattern so they
    still show up, grouped by inference.
    """

    clean_title = (title or "").strip()
    if not clean_title:
        raise ValidationError("Le titre du bilan est obligatoire")
    if not photos:
        raise ValidationError("Ajoutez au moins une photo")

    day = (today or date.today)()
    uploaded: List[RemoteFile] = []
    for index, photo in enumerate(photos, start=1):
        name = naming.bilan_file_name(day, clean_title, index, photo.extension)
        try:
            uploaded.append(drive.upload(photo.content, patient.bilans_folder_id, name, photo.mime_type))
        except Exception:
            logger.error(
                "Bilan upload for patient %s stopped at photo %d/%d", patient.id, index, len(photos)
            )
            raise

    record = BilanMeta(
        id=uuid.uuid4().hex,
        title=clean_title,
        date=utc_now_iso(),
        file_ids=[item.id for item in uploaded],
    )
    existing = load_bilans_meta(store, patient.id)
    save_bilans_meta(store, patient.id, existing + [record])
    logger.info("Patient %s: bilan %r created with %d photos", patient.id, clean_title, len(uploaded))

    return Bilan(
        id=record.id,
        title=record.title,
        created_at=_earliest_created(uploaded) or record.date,
        files=uploaded,
        source=SOURCE_META,
    )


__all__ = [
    "SOURCE_INFERRED",
    "SOURCE_META",
    "create_bilan",
    "group_bilans",
    "load_bilans",
    "pattern_key",
]
