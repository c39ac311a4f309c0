"""Google Sheets journal helpers with robust A1 range handling.

Every patient owns a single-tab spreadsheet named ``journal`` inside its
``Seances`` folder.  The tab holds one header row (``Date | Nom du fichier |
Description``) followed by one row per session, appended in chronological
order.  This module is the only place that speaks to the Sheets API:

* Worksheet titles are always quoted according to A1 rules, so the accented
  ``Séances`` tab never triggers "Unable to parse range" errors.
* Row indices exposed to callers are 1-based and exclude the header row.
  They reflect the sheet at read time; after a concurrent insertion or
  deletion an old index may target a different row.
* All failures surface as :mod:`kine.errors` exceptions.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, MutableSequence, Optional, Sequence

from kine.drive_api import SPREADSHEET_MIME_TYPE, DriveStore, execute_request
from kine.models import JournalRow
from kine.settings import JOURNAL_HEADERS, JOURNAL_SHEET_NAME, JOURNAL_TAB_TITLE

logger = logging.getLogger(__name__)

COLUMN_COUNT = len(JOURNAL_HEADERS)


def _column_letter(index: int) -> str:
    if index < 1:
        raise ValueError("Column index must be >= 1")
    letters: MutableSequence[str] = []
    while index:
        index, remainder = divmod(index - 1, 26)
        letters.append(chr(65 + remainder))
    return "".join(reversed(letters))


def quote_title(title: str) -> str:
    """Return a worksheet title quoted according to A1 notation rules."""

    safe = (title or "").strip()
    if len(safe) >= 2 and safe[0] == safe[-1] == "'":
        safe = safe[1:-1].replace("''", "'")
    if not safe:
        raise ValueError("Worksheet title must not be empty")
    return "'" + safe.replace("'", "''") + "'"


LAST_COLUMN = _column_letter(COLUMN_COUNT)


def a1_columns_range(title: str = JOURNAL_TAB_TITLE) -> str:
    return f"{quote_title(title)}!A:{LAST_COLUMN}"


def a1_body_range(title: str = JOURNAL_TAB_TITLE) -> str:
    """Range covering every row below the header."""

    return f"{quote_title(title)}!A2:{LAST_COLUMN}"


def a1_row_range(row_index: int, title: str = JOURNAL_TAB_TITLE) -> str:
    """Range of the journal row ``row_index`` (1-based, header excluded)."""

    if row_index < 1:
        raise ValueError("Row index must be >= 1")
    sheet_row = row_index + 1
    return f"{quote_title(title)}!A{sheet_row}:{LAST_COLUMN}{sheet_row}"


def format_journal_date(value: date) -> str:
    return value.strftime("%Y-%m-%d")


def _cell(row: Sequence[Any], index: int) -> str:
    if index < len(row) and row[index] is not None:
        return str(row[index])
    return ""


def _header_cell(text: str) -> Dict[str, Any]:
    return {
        "userEnteredValue": {"stringValue": text},
        "userEnteredFormat": {"textFormat": {"bold": True}},
    }


class JournalStore:
    """Row level access to the per-patient session journal."""

    def __init__(self, service, drive: DriveStore, *, tab_title: str = JOURNAL_TAB_TITLE) -> None:
        self._service = service
        self._drive = drive
        self._tab_title = tab_title

    # ------------------------------------------------------------------
    # Spreadsheet lifecycle
    # ------------------------------------------------------------------
    def create_journal(self, title: str, parent_folder_id: str) -> str:
        """Create the journal spreadsheet and move it under ``parent_folder_id``.

        ``title`` is the patient folder name and only used for logging; the
        spreadsheet itself is always called ``journal``.
        """

        body = {
            "properties": {"title": JOURNAL_SHEET_NAME},
            "sheets": [
                {
                    "properties": {
                        "title": self._tab_title,
                        "gridProperties": {"frozenRowCount": 1},
                    },
                    "data": [
                        {
                            "startRow": 0,
                            "startColumn": 0,
                            "rowData": [{"values": [_header_cell(text) for text in JOURNAL_HEADERS]}],
                        }
                    ],
                }
            ],
        }
        created = execute_request(
            self._service.spreadsheets().create(body=body, fields="spreadsheetId"),
            "Creating session journal",
        )
        spreadsheet_id = created["spreadsheetId"]
        self._drive.move(spreadsheet_id, parent_folder_id)
        logger.info("Created journal %s for %s", spreadsheet_id, title)
        return spreadsheet_id

    def find_journal(self, parent_folder_id: str) -> Optional[str]:
        return self._drive.find_file(JOURNAL_SHEET_NAME, parent_folder_id, SPREADSHEET_MIME_TYPE)

    def _sheet_id(self, journal_id: str) -> int:
        response = execute_request(
            self._service.spreadsheets().get(
                spreadsheetId=journal_id,
                fields="sheets(properties(sheetId,title))",
            ),
            "Reading journal metadata",
        )
        sheets = response.get("sheets", [])
        for sheet in sheets:
            properties = sheet.get("properties", {})
            if properties.get("title") == self._tab_title:
                return int(properties.get("sheetId", 0))
        if sheets:
            return int(sheets[0].get("properties", {}).get("sheetId", 0))
        return 0

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------
    def append_row(self, journal_id: str, entry_date: str, file_name: str, description: str = "") -> None:
        body = {"values": [[entry_date, file_name, description or ""]]}
        execute_request(
            self._service.spreadsheets()
            .values()
            .append(
                spreadsheetId=journal_id,
                range=a1_columns_range(self._tab_title),
                valueInputOption="USER_ENTERED",
                insertDataOption="INSERT_ROWS",
                body=body,
            ),
            "Appending journal row",
        )
        logger.info("Journal %s: appended %s", journal_id, file_name)

    def read_rows(self, journal_id: str) -> List[JournalRow]:
        """Return journal rows, most recently appended first."""

        response = execute_request(
            self._service.spreadsheets()
            .values()
            .get(spreadsheetId=journal_id, range=a1_body_range(self._tab_title)),
            "Reading journal",
        )
        values = response.get("values", []) if isinstance(response, dict) else []
        rows = [
            JournalRow(
                date=_cell(raw, 0),
                file_name=_cell(raw, 1),
                description=_cell(raw, 2),
                row_index=position,
            )
            for position, raw in enumerate(values, start=1)
        ]
        rows.reverse()
        return rows

    def update_row(
        self,
        journal_id: str,
        row_index: int,
        entry_date: str,
        file_name: str,
        description: str = "",
    ) -> None:
        target = a1_row_range(row_index, self._tab_title)
        execute_request(
            self._service.spreadsheets()
            .values()
            .update(
                spreadsheetId=journal_id,
                range=target,
                valueInputOption="USER_ENTERED",
                body={"values": [[entry_date, file_name, description or ""]]},
            ),
            f"Updating journal row {row_index}",
        )
        logger.info("Journal %s: updated row %s", journal_id, row_index)

    def delete_row(self, journal_id: str, row_index: int) -> None:
        if row_index < 1:
            raise ValueError("Row index must be >= 1")
        sheet_id = self._sheet_id(journal_id)
        request = {
            "deleteDimension": {
                "range": {
                    "sheetId": sheet_id,
                    "dimension": "ROWS",
                    # 0-based and end-exclusive; index 0 is the header row.
                    "startIndex": row_index,
                    "endIndex": row_index + 1,
                }
            }
        }
        execute_request(
            self._service.spreadsheets().batchUpdate(
                spreadsheetId=journal_id,
                body={"requests": [request]},
            ),
            f"Deleting journal row {row_index}",
        )
        logger.info("Journal %s: deleted row %s", journal_id, row_index)


__all__ = [
    "COLUMN_COUNT",
    "JournalStore",
    "a1_body_range",
    "a1_columns_range",
    "a1_row_range",
    "format_journal_date",
    "quote_title",
]
