"""Discovery of patient folders created on other devices.

The local roster is the source of truth.  Drive is only consulted for
*new* patients: a folder under ``KINE_APP/Patients`` whose name does not match
any cached patient is adopted once its ``Bilans`` and ``Seances`` subfolders
and its ``journal`` spreadsheet can be resolved.  Cached entries are never
removed or overwritten here, and the merge is returned as a delta instead of
being written in place.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from kine import naming
from kine.drive_api import FOLDER_MIME_TYPE, DriveStore
from kine.errors import AuthMissing, DataInconsistent, KineError
from kine.local_store import LocalStore, load_roster, save_roster
from kine.models import Patient, RemoteFolder, identity_key, utc_now_iso
from kine.settings import (
    BILANS_FOLDER_NAME,
    PATIENTS_FOLDER_NAME,
    ROOT_FOLDER_NAME,
    SEANCES_FOLDER_NAME,
)
from kine.sheets_client import JournalStore

logger = logging.getLogger(__name__)

IdFactory = Callable[[], str]
Clock = Callable[[], str]


def _new_patient_id() -> str:
    return uuid.uuid4().hex


@dataclass
class ReconcileResult:
    merged: List[Patient]
    discovered: List[Patient] = field(default_factory=list)


def _first_by_name(folders: Iterable[RemoteFolder]) -> Dict[str, RemoteFolder]:
    index: Dict[str, RemoteFolder] = {}
    for folder in folders:
        index.setdefault(folder.name, folder)
    return index


def adopt_folder(
    folder: RemoteFolder,
    parsed: naming.PatientFolderName,
    drive: DriveStore,
    journals: JournalStore,
    *,
    id_factory: IdFactory = _new_patient_id,
    clock: Clock = utc_now_iso,
) -> Patient:
    """Build a :class:`Patient` from a remote folder or raise :class:`DataInconsistent`."""

    children = _first_by_name(drive.list_sub_folders(folder.id))
    seances = children.get(SEANCES_FOLDER_NAME)
    if seances is None:
        raise DataInconsistent(f"{folder.name} has no {SEANCES_FOLDER_NAME} folder")
    bilans = children.get(BILANS_FOLDER_NAME)
    if bilans is None:
        raise DataInconsistent(f"{folder.name} has no {BILANS_FOLDER_NAME} folder")
    journal_id = journals.find_journal(seances.id)
    if not journal_id:
        raise DataInconsistent(f"{folder.name} has no session journal")

    return Patient(
        id=id_factory(),
        last_name=parsed.last_name,
        first_name=parsed.first_name,
        phone=parsed.phone,
        patient_folder_id=folder.id,
        bilans_folder_id=bilans.id,
        seances_folder_id=seances.id,
        journal_id=journal_id,
        created_at=clock(),
    )


def reconcile(
    roster: Sequence[Patient],
    remote_folders: Iterable[RemoteFolder],
    drive: DriveStore,
    journals: JournalStore,
    *,
    id_factory: IdFactory = _new_patient_id,
    clock: Clock = utc_now_iso,
) -> ReconcileResult:
    """Merge remote patient folders into ``roster`` without duplicates.

    Any transport, API or malformed-response failure degrades to "nothing
    new" so a background pass never reports an error to the user.
    :class:`AuthMissing` is the exception: it needs a new login and is raised.
    """

    known = {patient.identity for patient in roster}
    discovered: List[Patient] = []

    for folder in remote_folders:
        parsed = naming.parse_patient_folder_name(folder.name)
        if parsed is None:
            logger.debug("Ignoring folder %r: not a patient folder name", folder.name)
            continue
        key = identity_key(parsed.last_name, parsed.first_name)
        if key in known:
            continue
        try:
            patient = adopt_folder(folder, parsed, drive, journals, id_factory=id_factory, clock=clock)
        except DataInconsistent as exc:
            logger.info("Skipping patient folder %s: %s", folder.name, exc)
            continue
        except AuthMissing:
            raise
        except KineError as exc:
            logger.warning("Patient discovery aborted while reading %s: %s", folder.name, exc)
            return ReconcileResult(merged=list(roster), discovered=[])
        except (KeyError, ValueError, TypeError) as exc:
            logger.warning("Unexpected Drive response while reading %s: %r", folder.name, exc)
            return ReconcileResult(merged=list(roster), discovered=[])
        known.add(key)
        discovered.append(patient)
        logger.info("Discovered patient %s from folder %s", patient.display_name, folder.name)

    return ReconcileResult(merged=list(roster) + discovered, discovered=discovered)


def find_patients_root(drive: DriveStore, drive_folder_id: Optional[str] = None) -> Optional[str]:
    """Return the ``KINE_APP/Patients`` folder id without creating anything."""

    app_root = drive.find_file(ROOT_FOLDER_NAME, drive_folder_id, FOLDER_MIME_TYPE)
    if not app_root:
        return None
    return drive.find_file(PATIENTS_FOLDER_NAME, app_root, FOLDER_MIME_TYPE)


def discover_patients(
    drive: DriveStore,
    journals: JournalStore,
    store: LocalStore,
    *,
    drive_folder_id: Optional[str] = None,
    id_factory: IdFactory = _new_patient_id,
    clock: Clock = utc_now_iso,
) -> List[Patient]:
    """Run one discovery pass and cache the adopted patients.

    Raises :class:`AuthMissing` when the Google session is gone; every other
    failure yields an empty list.
    """

    try:
        root_id = find_patients_root(drive, drive_folder_id)
        if not root_id:
            logger.info("No %s/%s folder on Drive yet", ROOT_FOLDER_NAME, PATIENTS_FOLDER_NAME)
            return []
        folders = drive.list_sub_folders(root_id)
    except AuthMissing:
        raise
    except KineError as exc:
        logger.warning("Patient discovery skipped: %s", exc)
        return []
    except (KeyError, ValueError, TypeError) as exc:
        logger.warning("Patient discovery skipped, unexpected Drive response: %r", exc)
        return []

    result = reconcile(load_roster(store), folders, drive, journals, id_factory=id_factory, clock=clock)
    if not result.discovered:
        return []

    # The roster may have changed while Drive was being read.
    current = load_roster(store)
    present = {patient.identity for patient in current}
    added = [patient for patient in result.discovered if patient.identity not in present]
    if added:
        save_roster(store, current + added)
    return added


__all__ = [
    "ReconcileResult",
    "adopt_folder",
    "discover_patients",
    "find_patients_root",
    "reconcile",
]
