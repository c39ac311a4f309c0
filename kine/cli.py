"""Command line front-end for the patient records stored in Google Drive."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from typing import Callable, List, Optional, Sequence, Tuple

from kine import __version__, bilans, google_auth, patients, seances
from kine.drive_api import DriveStore
from kine.errors import AuthMissing, KineError, RemoteRejected, RemoteUnavailable, ValidationError
from kine.local_store import LocalStore
from kine.logging_config import configure_logging
from kine.models import Patient, PhotoUpload
from kine.roster_sync import RosterStatus, RosterSyncManager
from kine.settings import KineSettings, load_settings
from kine.sheets_client import JournalStore

logger = logging.getLogger(__name__)


def build_clients(settings: KineSettings) -> Tuple[DriveStore, JournalStore]:
    credentials = google_auth.load_credentials(settings.token_path)
    drive = DriveStore(google_auth.build_drive_service(credentials))
    journals = JournalStore(google_auth.build_sheets_service(credentials), drive)
    return drive, journals


def _error(message: str) -> int:
    print(f"Erreur : {message}", file=sys.stderr)
    return 1


def _describe(exc: KineError) -> str:
    if isinstance(exc, AuthMissing):
        return f"{exc} (kine login)"
    if isinstance(exc, RemoteUnavailable):
        return "Connexion à Google impossible. Vérifiez votre connexion."
    if isinstance(exc, RemoteRejected):
        return f"Google a refusé l'opération : {exc}"
    return str(exc)


def _require_patient(store: LocalStore, patient_id: str) -> Patient:
    patient = patients.find_patient(store, patient_id)
    if patient is None:
        raise ValidationError(f"Patient inconnu : {patient_id}")
    return patient


def _photos(paths: Sequence[str]) -> List[PhotoUpload]:
    try:
        return [PhotoUpload.from_path(path) for path in paths]
    except OSError as exc:
        raise ValidationError(f"Photo illisible : {exc}") from exc


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------
def command_login(args: argparse.Namespace, settings: KineSettings, store: LocalStore) -> int:
    try:
        google_auth.login(settings)
    except FileNotFoundError as exc:
        return _error(str(exc))
    print("Connecté à Google.")
    return 0


def command_patients(args: argparse.Namespace, settings: KineSettings, store: LocalStore) -> int:
    grouped = patients.group_by_initial(patients.list_patients(store, args.search or ""))
    if not grouped:
        print("Aucun patient trouvé" if args.search else "Aucun patient")
        return 0
    for letter, members in grouped.items():
        print(letter)
        for patient in members:
            phone = f"  {patient.phone}" if patient.phone else ""
            print(f"  {patient.id}  {patient.first_name} {patient.last_name}{phone}")
    return 0


def command_add_patient(args: argparse.Namespace, settings: KineSettings, store: LocalStore) -> int:
    drive, journals = build_clients(settings)
    try:
        creation = patients.create_patient(
            drive,
            journals,
            store,
            args.last_name,
            args.first_name,
            args.phone or "",
            drive_folder_id=settings.drive_parent,
        )
    except patients.PatientCreationError as exc:
        folders = exc.folders
        if folders is not None:
            print(f"Dossier créé sans journal : {folders.patient_folder_id}", file=sys.stderr)
        return _error(str(exc))
    print(f"Patient créé : {creation.patient.id} ({creation.folders.patient_folder_name})")
    return 0


def command_rename_patient(args: argparse.Namespace, settings: KineSettings, store: LocalStore) -> int:
    patient = _require_patient(store, args.patient)
    drive, _journals = build_clients(settings)
    updated = patients.rename_patient(drive, store, patient, args.last_name, args.first_name, args.phone)
    print(f"Patient mis à jour : {updated.display_name}")
    return 0


def command_delete_patient(args: argparse.Namespace, settings: KineSettings, store: LocalStore) -> int:
    patient = _require_patient(store, args.patient)
    if not args.yes:
        return _error("Suppression définitive : relancez avec --yes pour confirmer.")
    try:
        drive, _journals = build_clients(settings)
    except KineError as exc:
        logger.error("Drive unavailable while deleting patient %s: %s", patient.id, exc)
        patients.delete_patient(_OfflineDrive(exc), store, patient)
        print("Patient supprimé localement ; le dossier Drive n'a pas pu être supprimé.", file=sys.stderr)
        return 1
    if patients.delete_patient(drive, store, patient):
        print("Patient supprimé.")
        return 0
    print("Patient supprimé localement ; le dossier Drive n'a pas pu être supprimé.", file=sys.stderr)
    return 1


class _OfflineDrive:
    """Stand-in used when no Drive client can be built; every deletion fails."""

    def __init__(self, error: KineError) -> None:
        self._error = error

    def delete(self, file_id: str) -> None:
        raise self._error


def _print_status(status: RosterStatus) -> None:
    if status.error:
        print(f"Synchronisation impossible : {status.error}", file=sys.stderr)
        return
    if status.discovered:
        for name in status.discovered:
            print(f"Nouveau patient : {name}")
    else:
        print("Aucun nouveau patient.")


def command_sync(args: argparse.Namespace, settings: KineSettings, store: LocalStore) -> int:
    manager = RosterSyncManager(
        store,
        lambda: build_clients(settings),
        drive_folder_id=settings.drive_parent,
        poll_interval=settings.sync_interval_seconds,
        status_callback=_print_status if args.watch else None,
    )
    if not args.watch:
        status = manager.run_once()
        _print_status(status)
        return 0 if status.online else 1

    manager.start()
    try:
        while manager.is_running:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        manager.shutdown()
    return 0


def command_bilans(args: argparse.Namespace, settings: KineSettings, store: LocalStore) -> int:
    patient = _require_patient(store, args.patient)
    drive, _journals = build_clients(settings)
    records = bilans.load_bilans(drive, store, patient)
    if not records:
        print("Aucun bilan")
        return 0
    for record in records:
        count = f" ({len(record.files)} photos)" if len(record.files) > 1 else ""
        print(f"{record.created_at[:10]}  {record.display_title}{count}")
        for remote in record.files:
            print(f"    {remote.name}  {remote.view_url}")
    return 0


def command_add_bilan(args: argparse.Namespace, settings: KineSettings, store: LocalStore) -> int:
    patient = _require_patient(store, args.patient)
    photos = _photos(args.photos)
    drive, _journals = build_clients(settings)
    record = bilans.create_bilan(drive, store, patient, args.title, photos)
    print(f"Bilan enregistré : {record.title} ({len(record.files)} photos)")
    return 0


def command_seances(args: argparse.Namespace, settings: KineSettings, store: LocalStore) -> int:
    patient = _require_patient(store, args.patient)
    drive, journals = build_clients(settings)
    records = seances.load_seances(drive, journals, store, patient)
    if not records:
        print("Aucune séance")
        return 0
    for record in records:
        marker = "" if record.has_image else "  [photo introuvable]"
        description = f"  {record.description}" if record.description else ""
        print(f"#{record.row_index}  {record.date}  {record.file_name}{description}{marker}")
    return 0


def command_add_seance(args: argparse.Namespace, settings: KineSettings, store: LocalStore) -> int:
    patient = _require_patient(store, args.patient)
    photo = _photos([args.photo])[0] if args.photo else None
    drive, journals = build_clients(settings)
    remote = seances.add_seance(
        drive,
        journals,
        store,
        patient,
        photo,
        args.description or "",
        preview_width=settings.preview_max_width,
    )
    print(f"Séance enregistrée : {remote.name}")
    return 0


def _load_row(drive: DriveStore, journals: JournalStore, store: LocalStore, patient: Patient, row: int):
    record = seances.find_seance(seances.load_seances(drive, journals, store, patient), row)
    if record is None:
        raise ValidationError(f"Séance #{row} introuvable")
    return record


def command_edit_seance(args: argparse.Namespace, settings: KineSettings, store: LocalStore) -> int:
    patient = _require_patient(store, args.patient)
    photo = _photos([args.photo])[0] if args.photo else None
    drive, journals = build_clients(settings)
    record = _load_row(drive, journals, store, patient, args.row)
    updated = seances.update_seance(
        drive,
        journals,
        store,
        patient,
        record,
        entry_date=args.date,
        description=args.description,
        photo=photo,
        preview_width=settings.preview_max_width,
    )
    print(f"Séance #{updated.row_index} mise à jour.")
    return 0


def command_delete_seance(args: argparse.Namespace, settings: KineSettings, store: LocalStore) -> int:
    patient = _require_patient(store, args.patient)
    drive, journals = build_clients(settings)
    record = _load_row(drive, journals, store, patient, args.row)
    seances.delete_seance(drive, journals, store, patient, record)
    print(f"Séance #{args.row} supprimée.")
    return 0


Command = Callable[[argparse.Namespace, KineSettings, LocalStore], int]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kine", description="Dossiers patients sur Google Drive")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Journalisation détaillée")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add(name: str, handler: Command, help_text: str) -> argparse.ArgumentParser:
        sub = subparsers.add_parser(name, help=help_text)
        sub.set_defaults(handler=handler)
        return sub

    add("login", command_login, "Se connecter à Google")

    listing = add("patients", command_patients, "Lister les patients")
    listing.add_argument("search", nargs="?", default="", help="Filtre sur nom, prénom ou téléphone")

    creation = add("add-patient", command_add_patient, "Créer un patient")
    creation.add_argument("last_name")
    creation.add_argument("first_name")
    creation.add_argument("phone", nargs="?", default="")

    rename = add("rename-patient", command_rename_patient, "Modifier un patient")
    rename.add_argument("patient")
    rename.add_argument("last_name")
    rename.add_argument("first_name")
    rename.add_argument("phone")

    deletion = add("delete-patient", command_delete_patient, "Supprimer un patient")
    deletion.add_argument("patient")
    deletion.add_argument("--yes", action="store_true", help="Confirmer la suppression définitive")

    sync = add("sync", command_sync, "Récupérer les patients créés sur un autre appareil")
    sync.add_argument("--watch", action="store_true", help="Synchroniser en continu")

    listing = add("bilans", command_bilans, "Lister les bilans d'un patient")
    listing.add_argument("patient")

    bilan = add("add-bilan", command_add_bilan, "Ajouter un bilan")
    bilan.add_argument("patient")
    bilan.add_argument("title")
    bilan.add_argument("photos", nargs="+")

    listing = add("seances", command_seances, "Lister les séances d'un patient")
    listing.add_argument("patient")

    seance = add("add-seance", command_add_seance, "Ajouter une séance")
    seance.add_argument("patient")
    seance.add_argument("photo", nargs="?")
    seance.add_argument("--description", default="")

    edit = add("edit-seance", command_edit_seance, "Modifier une séance")
    edit.add_argument("patient")
    edit.add_argument("row", type=int)
    edit.add_argument("--date")
    edit.add_argument("--description")
    edit.add_argument("--photo")

    remove = add("delete-seance", command_delete_seance, "Supprimer une séance")
    remove.add_argument("patient")
    remove.add_argument("row", type=int)

    return parser


def main(argv: Optional[Sequence[str]] = None, *, settings: Optional[KineSettings] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(logging.DEBUG if args.verbose else logging.INFO)
    settings = settings or load_settings()
    store = LocalStore(settings.cache_path)

    try:
        return args.handler(args, settings, store)
    except KineError as exc:
        logger.error("Command %s failed: %s", args.command, exc)
        return _error(_describe(exc))


__all__ = ["build_clients", "build_parser", "main"]
