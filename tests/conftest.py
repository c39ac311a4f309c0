from __future__ import annotations

import itertools
import os
import re
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

# Application directories are resolved at import time.
os.environ.setdefault("KINE_APP_DIR", tempfile.mkdtemp(prefix="kine-tests-"))

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from kine.drive_api import FOLDER_MIME_TYPE, SPREADSHEET_MIME_TYPE, DriveStore  # noqa: E402
from kine.local_store import LocalStore  # noqa: E402
from kine.sheets_client import JournalStore  # noqa: E402


class _FakeRequest:
    def __init__(self, callback: Callable[[], Any]):
        self._callback = callback

    def execute(self):
        return self._callback()


class _Failures:
    """Exceptions to raise from ``execute()``, keyed by operation name."""

    def __init__(self) -> None:
        self._planned: Dict[str, Dict[int, BaseException]] = {}
        self._counts: Dict[str, int] = {}

    def plan(self, operation: str, error: BaseException, *, after: int = 0) -> None:
        """Fail the call to ``operation`` that follows ``after`` successful ones."""

        done = self._counts.get(operation, 0)
        self._planned.setdefault(operation, {})[done + after] = error

    def check(self, operation: str) -> None:
        position = self._counts.get(operation, 0)
        self._counts[operation] = position + 1
        error = self._planned.get(operation, {}).pop(position, None)
        if error is not None:
            raise error


_QUERY_NAME = re.compile(r"name = '((?:[^'\\]|\\.)*)'")
_QUERY_PARENT = re.compile(r"'([^']+)' in parents")
_QUERY_MIME = re.compile(r"mimeType (=|!=) '([^']+)'")


class _FakeFiles:
    def __init__(self, service: "FakeDriveService") -> None:
        self._service = service

    def list(self, q: str, spaces: str, fields: str, orderBy: Optional[str] = None, pageToken: Optional[str] = None):  # noqa: N803 - API compatibility
        return _FakeRequest(lambda: self._service._handle_list(q, pageToken))

    def create(self, body: Dict[str, Any], fields: str, media_body=None):
        return _FakeRequest(lambda: self._service._handle_create(body, media_body))

    def get(self, fileId: str, fields: str):  # noqa: N803 - API compatibility
        return _FakeRequest(lambda: {"parents": list(self._service.items[fileId]["parents"])})

    def get_media(self, fileId: str):  # noqa: N803 - API compatibility
        return _FakeRequest(lambda: self._service._handle_download(fileId))

    def update(
        self,
        fileId: str,  # noqa: N803 - API compatibility
        fields: str,
        body: Optional[Dict[str, Any]] = None,
        addParents: Optional[str] = None,  # noqa: N803
        removeParents: Optional[str] = None,  # noqa: N803
    ):
        return _FakeRequest(lambda: self._service._handle_update(fileId, body, addParents, removeParents))

    def delete(self, fileId: str):  # noqa: N803 - API compatibility
        return _FakeRequest(lambda: self._service._handle_delete(fileId))


class FakeDriveService:
    """In-memory stand-in for the Drive v3 ``files`` resource."""

    def __init__(self, page_size: int = 100) -> None:
        self.items: Dict[str, Dict[str, Any]] = {}
        self.contents: Dict[str, bytes] = {}
        self.calls: List[str] = []
        self.failures = _Failures()
        self.page_size = page_size
        self._ids = itertools.count(1)
        self._clock = datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)

    def files(self) -> _FakeFiles:  # noqa: D401 - API compatibility
        return _FakeFiles(self)

    # Fixture helpers --------------------------------------------------
    def add_item(
        self,
        name: str,
        parent: str = "root",
        *,
        mime_type: str = "image/jpeg",
        created: Optional[str] = None,
        item_id: Optional[str] = None,
    ) -> str:
        file_id = item_id or f"id{next(self._ids)}"
        self.items[file_id] = {
            "id": file_id,
            "name": name,
            "mimeType": mime_type,
            "parents": [parent],
            "createdTime": created or self._tick(),
            "webViewLink": f"https://drive.example/{file_id}/view",
            "webContentLink": f"https://drive.example/{file_id}/download",
            "thumbnailLink": f"https://drive.example/{file_id}/thumb",
        }
        return file_id

    def add_folder(self, name: str, parent: str = "root", *, item_id: Optional[str] = None) -> str:
        return self.add_item(name, parent, mime_type=FOLDER_MIME_TYPE, item_id=item_id)

    def children(self, parent: str) -> List[Dict[str, Any]]:
        return [item for item in self.items.values() if parent in item["parents"]]

    def child_named(self, parent: str, name: str) -> Optional[Dict[str, Any]]:
        for item in self.children(parent):
            if item["name"] == name:
                return item
        return None

    def _tick(self) -> str:
        self._clock += timedelta(minutes=1)
        return self._clock.strftime("%Y-%m-%dT%H:%M:%S.000Z")

    # Internal handlers ------------------------------------------------
    def _handle_list(self, query: str, page_token: Optional[str]) -> Dict[str, Any]:
        self.calls.append("list")
        self.failures.check("list")
        matches = list(self.items.values())
        name_match = _QUERY_NAME.search(query)
        if name_match:
            wanted = name_match.group(1).replace("\\'", "'").replace("\\\\", "\\")
            matches = [item for item in matches if item["name"] == wanted]
        parent_match = _QUERY_PARENT.search(query)
        if parent_match:
            matches = [item for item in matches if parent_match.group(1) in item["parents"]]
        mime_match = _QUERY_MIME.search(query)
        if mime_match:
            operator, mime = mime_match.groups()
            if operator == "=":
                matches = [item for item in matches if item["mimeType"] == mime]
            else:
                matches = [item for item in matches if item["mimeType"] != mime]

        start = int(page_token or 0)
        page = matches[start : start + self.page_size]
        response: Dict[str, Any] = {"files": [dict(item) for item in page]}
        if start + self.page_size < len(matches):
            response["nextPageToken"] = str(start + self.page_size)
        return response

    def _handle_create(self, body: Dict[str, Any], media_body) -> Dict[str, Any]:
        operation = "upload" if media_body is not None else "create"
        self.calls.append(operation)
        self.failures.check(operation)
        parent = (body.get("parents") or ["root"])[0]
        file_id = self.add_item(body["name"], parent, mime_type=body.get("mimeType") or getattr(media_body, "mimetype", lambda: "")())
        if media_body is not None:
            self.contents[file_id] = media_body.getbytes(0, media_body.size())
        return dict(self.items[file_id])

    def _handle_download(self, file_id: str) -> bytes:
        self.calls.append("download")
        self.failures.check("download")
        return self.contents[file_id]

    def _handle_update(self, file_id, body, add_parents, remove_parents) -> Dict[str, Any]:
        self.calls.append("update")
        self.failures.check("update")
        item = self.items[file_id]
        if body and "name" in body:
            item["name"] = body["name"]
        if remove_parents:
            removed = set(remove_parents.split(","))
            item["parents"] = [parent for parent in item["parents"] if parent not in removed]
        if add_parents:
            item["parents"].extend(add_parents.split(","))
        return dict(item)

    def _handle_delete(self, file_id: str) -> str:
        self.calls.append("delete")
        self.failures.check("delete")
        pending = [file_id]
        while pending:
            current = pending.pop()
            pending.extend(child["id"] for child in self.children(current))
            self.items.pop(current, None)
            self.contents.pop(current, None)
        return ""


_ROW_RANGE = re.compile(r"!A(\d+):[A-Z]+(\d*)$")


class _FakeValues:
    def __init__(self, service: "FakeSheetsService") -> None:
        self._service = service

    def append(self, spreadsheetId: str, range: str, valueInputOption: str, insertDataOption: str, body: Dict[str, Any]):  # noqa: N803 - API compatibility
        return _FakeRequest(lambda: self._service._handle_append(spreadsheetId, range, body))

    def get(self, spreadsheetId: str, range: str):  # noqa: N803 - API compatibility
        return _FakeRequest(lambda: self._service._handle_get(spreadsheetId, range))

    def update(self, spreadsheetId: str, range: str, valueInputOption: str, body: Dict[str, Any]):  # noqa: N803 - API compatibility
        return _FakeRequest(lambda: self._service._handle_update(spreadsheetId, range, body))


class _FakeSpreadsheets:
    def __init__(self, service: "FakeSheetsService") -> None:
        self._service = service

    def values(self) -> _FakeValues:  # noqa: D401 - API compatibility
        return _FakeValues(self._service)

    def create(self, body: Dict[str, Any], fields: str):
        return _FakeRequest(lambda: self._service._handle_create(body))

    def get(self, spreadsheetId: str, fields: str):  # noqa: N803 - API compatibility
        return _FakeRequest(lambda: self._service._handle_metadata(spreadsheetId))

    def batchUpdate(self, spreadsheetId: str, body: Dict[str, Any]):  # noqa: N802,N803 - API compatibility
        return _FakeRequest(lambda: self._service._handle_batch_update(spreadsheetId, body))


class FakeSheetsService:
    """In-memory spreadsheets; ``rows[id]`` includes the header row."""

    def __init__(self, drive: Optional[FakeDriveService] = None) -> None:
        self.drive = drive
        self.rows: Dict[str, List[List[str]]] = {}
        self.titles: Dict[str, str] = {}
        self.ranges: List[str] = []
        self.batch_requests: List[Dict[str, Any]] = []
        self.failures = _Failures()
        self._ids = itertools.count(1)

    def spreadsheets(self) -> _FakeSpreadsheets:  # noqa: D401 - API compatibility
        return _FakeSpreadsheets(self)

    def add_journal(self, rows: Optional[List[List[str]]] = None, *, parent: Optional[str] = None, tab: str = "Séances") -> str:
        header = ["Date", "Nom du fichier", "Description"]
        if self.drive is not None and parent is not None:
            sheet_id = self.drive.add_item("journal", parent, mime_type=SPREADSHEET_MIME_TYPE)
        else:
            sheet_id = f"sheet{next(self._ids)}"
        self.rows[sheet_id] = [header] + [list(row) for row in rows or []]
        self.titles[sheet_id] = tab
        return sheet_id

    def body(self, sheet_id: str) -> List[List[str]]:
        return self.rows[sheet_id][1:]

    # Internal handlers ------------------------------------------------
    def _handle_create(self, body: Dict[str, Any]) -> Dict[str, Any]:
        self.failures.check("create")
        sheet = body["sheets"][0]
        header_cells = sheet["data"][0]["rowData"][0]["values"]
        header = [cell["userEnteredValue"]["stringValue"] for cell in header_cells]
        if self.drive is not None:
            sheet_id = self.drive.add_item(body["properties"]["title"], "root", mime_type=SPREADSHEET_MIME_TYPE)
        else:
            sheet_id = f"sheet{next(self._ids)}"
        self.rows[sheet_id] = [header]
        self.titles[sheet_id] = sheet["properties"]["title"]
        return {"spreadsheetId": sheet_id}

    def _handle_metadata(self, sheet_id: str) -> Dict[str, Any]:
        return {"sheets": [{"properties": {"sheetId": 77, "title": self.titles[sheet_id]}}]}

    def _handle_append(self, sheet_id: str, range_spec: str, body: Dict[str, Any]) -> Dict[str, Any]:
        self.ranges.append(range_spec)
        self.failures.check("append")
        self.rows[sheet_id].extend(list(row) for row in body["values"])
        return {}

    def _handle_get(self, sheet_id: str, range_spec: str) -> Dict[str, Any]:
        self.ranges.append(range_spec)
        self.failures.check("get")
        match = _ROW_RANGE.search(range_spec)
        start = int(match.group(1)) - 1 if match else 0
        values = [list(row) for row in self.rows[sheet_id][start:]]
        return {"values": values} if values else {}

    def _handle_update(self, sheet_id: str, range_spec: str, body: Dict[str, Any]) -> Dict[str, Any]:
        self.ranges.append(range_spec)
        self.failures.check("update")
        match = _ROW_RANGE.search(range_spec)
        assert match is not None
        row = int(match.group(1)) - 1
        self.rows[sheet_id][row] = list(body["values"][0])
        return {}

    def _handle_batch_update(self, sheet_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        self.batch_requests.append(body)
        self.failures.check("batchUpdate")
        for request in body.get("requests", []):
            dimension = request.get("deleteDimension")
            if dimension:
                span = dimension["range"]
                del self.rows[sheet_id][span["startIndex"] : span["endIndex"]]
        return {}


@pytest.fixture
def drive_service() -> FakeDriveService:
    return FakeDriveService()


@pytest.fixture
def sheets_service(drive_service: FakeDriveService) -> FakeSheetsService:
    return FakeSheetsService(drive_service)


@pytest.fixture
def drive(drive_service: FakeDriveService) -> DriveStore:
    return DriveStore(drive_service)


@pytest.fixture
def journals(sheets_service: FakeSheetsService, drive: DriveStore) -> JournalStore:
    return JournalStore(sheets_service, drive)


@pytest.fixture
def store(tmp_path: Path) -> LocalStore:
    return LocalStore(tmp_path / "local_store.json")
