"""Patient lifecycle: creation, rename, deletion and roster queries.

Creating a patient touches two remote systems (the Drive folder tree and the
journal spreadsheet) before the local cache.  There is no transaction across
them, so creation is split into explicit steps and a failure after the
folders exist is reported with the ids already created.  Nothing is rolled
back; the caller decides whether to retry the journal or clean up by hand.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from kine import local_store, naming
from kine.drive_api import DriveStore, PatientFolders, ensure_patient_folders
from kine.errors import KineError, ValidationError
from kine.local_store import LocalStore
from kine.models import Patient, identity_key, utc_now_iso
from kine.sheets_client import JournalStore

logger = logging.getLogger(__name__)


class PatientCreationError(KineError):
    """Raised when patient creation stops after some remote steps succeeded."""

    def __init__(self, message: str, *, folders: Optional[PatientFolders] = None, cause: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.folders = folders
        self.cause = cause


@dataclass
class PatientCreation:
    """Intermediate results of :func:`create_patient`."""

    folders: PatientFolders
    journal_id: str
    patient: Patient


def _required(value: str, message: str) -> str:
    cleaned = naming.clean_name_component(value)
    if not cleaned:
        raise ValidationError(message)
    return cleaned


def _ensure_unique(store: LocalStore, last_name: str, first_name: str, *, exclude_id: Optional[str] = None) -> None:
    key = identity_key(last_name, first_name)
    for patient in local_store.load_roster(store):
        if patient.id != exclude_id and patient.identity == key:
            raise ValidationError(f"Le patient {first_name} {last_name} existe déjà")


def create_folders(
    drive: DriveStore,
    last_name: str,
    first_name: str,
    phone: str = "",
    *,
    drive_folder_id: Optional[str] = None,
) -> PatientFolders:
    """Step 1: folder tree ``KINE_APP/Patients/<NAME>/{Bilans,Seances}``."""

    return ensure_patient_folders(drive, last_name, first_name, phone, drive_folder_id=drive_folder_id)


def create_journal(journals: JournalStore, folders: PatientFolders) -> str:
    """Step 2: the session journal inside ``Seances``."""

    return journals.create_journal(folders.patient_folder_name, folders.seances_folder_id)


def cache_patient(
    store: LocalStore,
    folders: PatientFolders,
    journal_id: str,
    last_name: str,
    first_name: str,
    phone: str = "",
) -> Patient:
    """Step 3: record the patient in the local roster."""

    patient = Patient(
        id=uuid.uuid4().hex,
        # Same components as the folder name, so discovery sees the same identity.
        last_name=naming.clean_name_component(last_name),
        first_name=naming.clean_name_component(first_name),
        phone=naming.clean_name_component(phone),
        patient_folder_id=folders.patient_folder_id,
        bilans_folder_id=folders.bilans_folder_id,
        seances_folder_id=folders.seances_folder_id,
        journal_id=journal_id,
        created_at=utc_now_iso(),
    )
    roster = local_store.load_roster(store)
    roster.append(patient)
    local_store.save_roster(store, roster)
    return patient


def create_patient(
    drive: DriveStore,
    journals: JournalStore,
    store: LocalStore,
    last_name: str,
    first_name: str,
    phone: str = "",
    *,
    drive_folder_id: Optional[str] = None,
) -> PatientCreation:
    last_name = _required(last_name, "Tous les champs sont obligatoires")
    first_name = _required(first_name, "Tous les champs sont obligatoires")
    phone = naming.clean_name_component(phone)
    _ensure_unique(store, last_name, first_name)

    folders = create_folders(drive, last_name, first_name, phone, drive_folder_id=drive_folder_id)
    try:
        journal_id = create_journal(journals, folders)
    except KineError as exc:
        logger.error(
            "Journal creation failed for %s; folder %s left without journal",
            folders.patient_folder_name,
            folders.patient_folder_id,
        )
        raise PatientCreationError(
            f"Les dossiers de {folders.patient_folder_name} ont été créés mais pas le journal : {exc}",
            folders=folders,
            cause=exc,
        ) from exc

    patient = cache_patient(store, folders, journal_id, last_name, first_name, phone)
    logger.info("Patient %s created in folder %s", patient.id, folders.patient_folder_name)
    return PatientCreation(folders=folders, journal_id=journal_id, patient=patient)


def find_patient(store: LocalStore, patient_id: str) -> Optional[Patient]:
    for patient in local_store.load_roster(store):
        if patient.id == patient_id:
            return patient
    return None


def rename_patient(
    drive: DriveStore,
    store: LocalStore,
    patient: Patient,
    last_name: str,
    first_name: str,
    phone: str,
) -> Patient:
    """Rename the patient's Drive folder, then update the cached entry."""

    last_name = _required(last_name, "Tous les champs sont obligatoires")
    first_name = _required(first_name, "Tous les champs sont obligatoires")
    phone = _required(phone, "Tous les champs sont obligatoires")

    if (last_name, first_name, phone) == (patient.last_name, patient.first_name, patient.phone):
        return patient
    _ensure_unique(store, last_name, first_name, exclude_id=patient.id)

    if patient.patient_folder_id:
        drive.rename(patient.patient_folder_id, naming.patient_folder_name(last_name, first_name, phone))

    updated = Patient.from_dict(patient.to_dict())
    updated.last_name = last_name
    updated.first_name = first_name
    updated.phone = phone

    roster = [updated if entry.id == patient.id else entry for entry in local_store.load_roster(store)]
    local_store.save_roster(store, roster)
    logger.info("Patient %s renamed", patient.id)
    return updated


def delete_patient(drive: DriveStore, store: LocalStore, patient: Patient) -> bool:
    """Delete the Drive folder tree, then evict the patient from the cache.

    The cache is cleaned even when Drive refuses the deletion so the user is
    never left with an entry that cannot be removed. Returns whether the remote
    deletion succeeded.
    """

    remote_deleted = True
    if patient.patient_folder_id:
        try:
            drive.delete(patient.patient_folder_id)
        except KineError as exc:
            remote_deleted = False
            logger.error("Drive folder of patient %s could not be deleted: %s", patient.id, exc)
    local_store.forget_patient(store, patient.id)
    logger.info("Patient %s removed from the local roster", patient.id)
    return remote_deleted


def list_patients(store: LocalStore, search: str = "") -> List[Patient]:
    """Roster sorted by first name, optionally filtered on names and phone."""

    term = (search or "").strip().casefold()
    patients = local_store.load_roster(store)
    if term:
        patients = [
            patient
            for patient in patients
            if term in patient.last_name.casefold()
            or term in patient.first_name.casefold()
            or term in patient.phone
        ]
    return sorted(patients, key=lambda patient: (patient.first_name.casefold(), patient.last_name.casefold()))


def group_by_initial(patients: Sequence[Patient]) -> Dict[str, List[Patient]]:
    """Group patients by the first letter of their first name, letters sorted."""

    grouped: Dict[str, List[Patient]] = {}
    for patient in patients:
        letter = patient.first_name[:1].upper() or "#"
        grouped.setdefault(letter, []).append(patient)
    return {letter: grouped[letter] for letter in sorted(grouped)}


__all__ = [
    "PatientCreation",
    "PatientCreationError",
    "cache_patient",
    "create_folders",
    "create_journal",
    "create_patient",
    "delete_patient",
    "find_patient",
    "group_by_initial",
    "list_patients",
    "rename_patient",
]
