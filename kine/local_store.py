"""JSON file backed key-value cache kept on the device."""
from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from kine.models import BilanMeta, Patient

logger = logging.getLogger(__name__)

ROSTER_KEY = "patients"


def bilans_meta_key(patient_id: str) -> str:
    return f"bilans_meta_{patient_id}"


def seances_previews_key(patient_id: str) -> str:
    return f"seances_previews_{patient_id}"


class LocalStore:
    """Persist small JSON values by key.

    Writes are synchronous and last-write-wins. The lock serialises writers
    inside one process only; two processes sharing the file are not merged.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        if self._path.parent and not self._path.parent.exists():
            self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Local cache %s could not be read: %s", self._path, exc)
            return {}
        if isinstance(payload, dict):
            return payload
        return {}

    def _write(self, payload: Dict[str, Any]) -> None:
        temp_path = self._path.with_name(self._path.name + ".tmp")
        with temp_path.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)
        os.replace(temp_path, self._path)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._read().get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            payload = self._read()
            payload[key] = value
            self._write(payload)

    def delete(self, key: str) -> None:
        with self._lock:
            payload = self._read()
            if key in payload:
                del payload[key]
                self._write(payload)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._read().keys())


def _list_value(store: LocalStore, key: str) -> List[Any]:
    value = store.get(key, [])
    if isinstance(value, list):
        return value
    logger.warning("Ignoring malformed cache entry %s", key)
    return []


def load_roster(store: LocalStore) -> List[Patient]:
    return [
        Patient.from_dict(entry)
        for entry in _list_value(store, ROSTER_KEY)
        if isinstance(entry, dict)
    ]


def save_roster(store: LocalStore, patients: List[Patient]) -> None:
    store.set(ROSTER_KEY, [patient.to_dict() for patient in patients])


def load_bilans_meta(store: LocalStore, patient_id: str) -> List[BilanMeta]:
    return [
        BilanMeta.from_dict(entry)
        for entry in _list_value(store, bilans_meta_key(patient_id))
        if isinstance(entry, dict)
    ]


def save_bilans_meta(store: LocalStore, patient_id: str, records: List[BilanMeta]) -> None:
    store.set(bilans_meta_key(patient_id), [record.to_dict() for record in records])


def load_previews(store: LocalStore, patient_id: str) -> Dict[str, str]:
    """Return ``{file_id: data_url}`` for the patient's cached session previews."""

    previews: Dict[str, str] = {}
    for entry in _list_value(store, seances_previews_key(patient_id)):
        if not isinstance(entry, dict):
            continue
        file_id = entry.get("fileId")
        data_url = entry.get("dataUrl")
        if file_id and data_url:
            previews[str(file_id)] = str(data_url)
    return previews


def save_preview(store: LocalStore, patient_id: str, file_id: str, data_url: str) -> None:
    key = seances_previews_key(patient_id)
    entries = [
        entry
        for entry in _list_value(store, key)
        if isinstance(entry, dict) and entry.get("fileId") != file_id
    ]
    entries.append({"fileId": file_id, "dataUrl": data_url})
    store.set(key, entries)


def drop_preview(store: LocalStore, patient_id: str, file_id: Optional[str]) -> None:
    if not file_id:
        return
    key = seances_previews_key(patient_id)
    entries = _list_value(store, key)
    remaining = [entry for entry in entries if not (isinstance(entry, dict) and entry.get("fileId") == file_id)]
    if len(remaining) != len(entries):
        store.set(key, remaining)


def forget_patient(store: LocalStore, patient_id: str) -> None:
    """Evict a patient and every per-patient key from the cache."""

    roster = [patient for patient in load_roster(store) if patient.id != patient_id]
    save_roster(store, roster)
    store.delete(bilans_meta_key(patient_id))
    store.delete(seances_previews_key(patient_id))


__all__ = [
    "LocalStore",
    "ROSTER_KEY",
    "bilans_meta_key",
    "drop_preview",
    "forget_patient",
    "load_bilans_meta",
    "load_previews",
    "load_roster",
    "save_bilans_meta",
    "save_preview",
    "save_roster",
    "seances_previews_key",
]
