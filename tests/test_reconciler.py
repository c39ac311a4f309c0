from __future__ import annotations

import itertools

import pytest
from google.auth.exceptions import RefreshError

from kine import reconciler
from kine.errors import AuthMissing
from kine.local_store import load_roster, save_roster
from kine.models import Patient, RemoteFolder


def _ids():
    counter = itertools.count(1)
    return lambda: f"patient-{next(counter)}"


def _clock() -> str:
    return "2024-03-05T10:00:00.000Z"


def _patients_root(drive_service) -> str:
    app_root = drive_service.add_folder("KINE_APP")
    return drive_service.add_folder("Patients", app_root)


def _remote_patient(drive_service, sheets_service, root: str, name: str, *, bilans=True, seances=True, journal=True) -> str:
    folder = drive_service.add_folder(name, root)
    if bilans:
        drive_service.add_folder("Bilans", folder)
    if seances:
        seances_id = drive_service.add_folder("Seances", folder)
        if journal:
            sheets_service.add_journal(parent=seances_id)
    return folder


def _folders(drive_service, root: str):
    return [RemoteFolder(id=item["id"], name=item["name"]) for item in drive_service.children(root)]


def test_remote_folder_is_adopted_with_its_phone(drive_service, sheets_service, drive, journals) -> None:
    root = _patients_root(drive_service)
    folder = _remote_patient(drive_service, sheets_service, root, "DUPONT_Jean_0612345678")

    result = reconciler.reconcile([], _folders(drive_service, root), drive, journals, id_factory=_ids(), clock=_clock)

    (patient,) = result.discovered
    assert (patient.last_name, patient.first_name, patient.phone) == ("DUPONT", "Jean", "0612345678")
    assert patient.patient_folder_id == folder
    assert patient.id == "patient-1"
    assert patient.created_at == _clock()
    assert patient.journal_id
    assert result.merged == [patient]


def test_incomplete_folders_are_skipped(drive_service, sheets_service, drive, journals) -> None:
    root = _patients_root(drive_service)
    _remote_patient(drive_service, sheets_service, root, "DUPONT_Jean", seances=False)
    _remote_patient(drive_service, sheets_service, root, "MARTIN_Lea", bilans=False)
    _remote_patient(drive_service, sheets_service, root, "BERNARD_Paul", journal=False)

    result = reconciler.reconcile([], _folders(drive_service, root), drive, journals)

    assert result.discovered == []
    assert result.merged == []


def test_known_identities_are_not_duplicated(drive_service, sheets_service, drive, journals) -> None:
    root = _patients_root(drive_service)
    _remote_patient(drive_service, sheets_service, root, "DUPONT_Jean_0612345678")
    cached = Patient(id="local", last_name="Dupont", first_name="jean")

    result = reconciler.reconcile([cached], _folders(drive_service, root), drive, journals)

    assert result.discovered == []
    assert result.merged == [cached]


def test_reconcile_is_idempotent(drive_service, sheets_service, drive, journals) -> None:
    root = _patients_root(drive_service)
    _remote_patient(drive_service, sheets_service, root, "DUPONT_Jean")
    folders = _folders(drive_service, root)

    first = reconciler.reconcile([], folders, drive, journals)
    second = reconciler.reconcile(first.merged, folders, drive, journals)

    assert second.discovered == []
    assert second.merged == first.merged


def test_duplicate_remote_folders_are_adopted_once(drive_service, sheets_service, drive, journals) -> None:
    root = _patients_root(drive_service)
    _remote_patient(drive_service, sheets_service, root, "DUPONT_Jean")
    _remote_patient(drive_service, sheets_service, root, "DUPONT_Jean_0600000000")

    result = reconciler.reconcile([], _folders(drive_service, root), drive, journals)

    assert len(result.discovered) == 1


def test_non_patient_folder_names_are_ignored(drive_service, sheets_service, drive, journals) -> None:
    root = _patients_root(drive_service)
    _remote_patient(drive_service, sheets_service, root, "Archives")

    assert reconciler.reconcile([], _folders(drive_service, root), drive, journals).discovered == []


def test_legacy_undefined_phone_is_read_as_empty(drive_service, sheets_service, drive, journals) -> None:
    root = _patients_root(drive_service)
    _remote_patient(drive_service, sheets_service, root, "DUPONT_Jean_undefined")

    (patient,) = reconciler.reconcile([], _folders(drive_service, root), drive, journals).discovered

    assert patient.phone == ""


def test_network_failure_keeps_the_roster_unchanged(drive_service, sheets_service, drive, journals) -> None:
    root = _patients_root(drive_service)
    _remote_patient(drive_service, sheets_service, root, "DUPONT_Jean")
    _remote_patient(drive_service, sheets_service, root, "MARTIN_Lea")
    cached = Patient(id="local", last_name="Bernard", first_name="Paul")
    folders = _folders(drive_service, root)
    drive_service.failures.plan("list", OSError("network unreachable"), after=2)

    result = reconciler.reconcile([cached], folders, drive, journals)

    assert result.discovered == []
    assert result.merged == [cached]


def test_discover_patients_saves_new_patients(drive_service, sheets_service, drive, journals, store) -> None:
    root = _patients_root(drive_service)
    _remote_patient(drive_service, sheets_service, root, "DUPONT_Jean_0612345678")
    save_roster(store, [Patient(id="local", last_name="Martin", first_name="Lea")])

    added = reconciler.discover_patients(drive, journals, store, id_factory=_ids())

    assert [patient.id for patient in added] == ["patient-1"]
    assert [patient.id for patient in load_roster(store)] == ["local", "patient-1"]
    assert reconciler.discover_patients(drive, journals, store) == []


def test_discover_patients_does_not_create_the_app_folder(drive_service, drive, journals, store) -> None:
    assert reconciler.discover_patients(drive, journals, store) == []
    assert drive_service.items == {}
    assert "create" not in drive_service.calls


def test_discover_patients_degrades_on_network_errors(drive_service, drive, journals, store) -> None:
    _patients_root(drive_service)
    drive_service.failures.plan("list", OSError("network unreachable"))

    assert reconciler.discover_patients(drive, journals, store) == []
    assert load_roster(store) == []


def test_malformed_drive_response_keeps_the_roster_unchanged(drive_service, sheets_service, drive, journals) -> None:
    root = _patients_root(drive_service)
    _remote_patient(drive_service, sheets_service, root, "DUPONT_Jean")
    cached = Patient(id="local", last_name="Bernard", first_name="Paul")
    drive_service.failures.plan("list", ValueError("malformed response body"))

    result = reconciler.reconcile([cached], _folders(drive_service, root), drive, journals)

    assert result.discovered == []
    assert result.merged == [cached]


def test_expired_session_stops_reconciliation(drive_service, sheets_service, drive, journals) -> None:
    root = _patients_root(drive_service)
    _remote_patient(drive_service, sheets_service, root, "DUPONT_Jean")
    _remote_patient(drive_service, sheets_service, root, "MARTIN_Lea")
    drive_service.failures.plan("list", RefreshError("invalid_grant"), after=1)

    with pytest.raises(AuthMissing):
        reconciler.reconcile([], _folders(drive_service, root), drive, journals)


def test_discover_patients_degrades_on_malformed_responses(drive_service, drive, journals, store) -> None:
    _patients_root(drive_service)
    drive_service.failures.plan("list", KeyError("files"))

    assert reconciler.discover_patients(drive, journals, store) == []
    assert load_roster(store) == []


def test_discover_patients_raises_when_the_session_expired(drive_service, sheets_service, drive, journals, store) -> None:
    root = _patients_root(drive_service)
    _remote_patient(drive_service, sheets_service, root, "DUPONT_Jean")
    drive_service.failures.plan("list", RefreshError("invalid_grant"))

    with pytest.raises(AuthMissing):
        reconciler.discover_patients(drive, journals, store)

    assert load_roster(store) == []
