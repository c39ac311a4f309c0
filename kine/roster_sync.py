"""Background discovery of patients created on other devices."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from kine.drive_api import DriveStore
from kine.errors import AuthMissing, KineError
from kine.local_store import LocalStore
from kine.models import utc_now_iso
from kine.reconciler import discover_patients
from kine.sheets_client import JournalStore

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], Tuple[DriveStore, JournalStore]]


@dataclass
class RosterStatus:
    """Status payload reported to callers."""

    online: bool
    last_sync: Optional[str] = None
    discovered: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {"online": self.online}
        if self.last_sync:
            payload["last_sync"] = self.last_sync
        if self.discovered:
            payload["discovered"] = list(self.discovered)
        if self.error:
            payload["error"] = self.error
        return payload


StatusCallback = Callable[[RosterStatus], None]


class RosterSyncManager:
    """Run patient discovery periodically on a daemon thread.

    Each pass builds its own Drive/Sheets clients through ``client_factory``
    because googleapiclient services must not be shared between threads. A
    pass already talking to Google cannot be aborted; :meth:`shutdown` only
    prevents the next one.
    """

    def __init__(
        self,
        store: LocalStore,
        client_factory: ClientFactory,
        *,
        drive_folder_id: Optional[str] = None,
        poll_interval: float = 300.0,
        status_callback: Optional[StatusCallback] = None,
    ) -> None:
        self._store = store
        self._client_factory = client_factory
        self._drive_folder_id = drive_folder_id
        self._poll_interval = poll_interval
        self._status_callback = status_callback
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._online = False
        self._last_sync: Optional[str] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="roster-sync", daemon=True)
        self._thread.start()

    def shutdown(self, timeout: float = 3.0) -> None:
        self._stop_event.set()
        self._wake_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._thread = None

    @property
    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------
    def run_once(self) -> RosterStatus:
        """Run a single discovery pass on the calling thread."""

        try:
            drive, journals = self._client_factory()
        except AuthMissing:
            raise
        except KineError as exc:
            logger.warning("Roster sync could not reach Google: %s", exc)
            return self._notify(online=False, error=str(exc))

        added = discover_patients(drive, journals, self._store, drive_folder_id=self._drive_folder_id)
        self._last_sync = utc_now_iso()
        return self._notify(online=True, discovered=[patient.display_name for patient in added])

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except AuthMissing as exc:
                logger.warning("Roster sync stopped: %s", exc)
                self._notify(online=False, error=str(exc))
                return
            except Exception:
                logger.exception("Background roster sync cycle failed")
                self._notify(online=False, error="Synchronization error")
            self._wake_event.wait(timeout=self._poll_interval)
            self._wake_event.clear()

    def _notify(
        self,
        *,
        online: bool,
        discovered: Optional[List[str]] = None,
        error: Optional[str] = None,
    ) -> RosterStatus:
        self._online = online
        status = RosterStatus(
            online=online,
            last_sync=self._last_sync,
            discovered=list(discovered or []),
            error=error,
        )
        if self._status_callback:
            try:
                self._status_callback(status)
            except Exception:  # pragma: no cover - caller callback guard
                logger.debug("Status callback failed", exc_info=True)
        return status


__all__ = ["RosterStatus", "RosterSyncManager"]
