from __future__ import annotations

from typing import Callable, Iterable, List

import logging
import os
import re
import ssl
import time

from google.auth.exceptions import GoogleAuthError
from google.oauth2.service_account import Credentials
from googleapiclient.discovery import Resource
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import HttpRequest
from httplib2 import HttpLib2Error

from .config import SheetsConfig
from .errors import InvalidSourceError, SourceAccessError

READ_SCOPES = ["https://www.googleapis.com/auth/spreadsheets.readonly"]
WRITE_SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

LOGGER = logging.getLogger(__name__)

_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
_MAX_RETRY_ATTEMPTS = 4
_INITIAL_BACKOFF_SECONDS = 1.0
_MAX_BACKOFF_SECONDS = 8.0
_RETRYABLE_EXCEPTIONS = (ssl.SSLEOFError, HttpLib2Error)

_SHEET_URL_PATTERN = re.compile(r"/spreadsheets/d/([a-zA-Z0-9-_]+)")
_BARE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9-_]{20,}$")


def extract_spreadsheet_id(source: str) -> str:
    """Return the spreadsheet id from a sheet URL or a bare id."""

    text = (source or "").strip()
    match = _SHEET_URL_PATTERN.search(text)
    if match:
        return match.group(1)
    if _BARE_ID_PATTERN.match(text):
        return text
    raise InvalidSourceError(f"Invalid Google Sheets URL: {source!r}")


def _a1_range(sheet_name: str, cells: str | None = None) -> str:
    quoted = "'" + sheet_name.replace("'", "''") + "'"
    return f"{quoted}!{cells}" if cells else quoted


class GoogleSheetsClient:
    """Thin wrapper around the Google Sheets API for reading campaign grids."""

    def __init__(self, conf: SheetsConfig) -> None:
        self._conf = conf
        self._service: Resource | None = None

    def _service_client(self) -> Resource:
        if self._service is None:
            if self._conf.credentials_file is not None:
                creds = Credentials.from_service_account_file(
                    str(self._conf.credentials_file), scopes=WRITE_SCOPES
                )
                self._service = build("sheets", "v4", credentials=creds)
            else:
                api_key = self._conf.api_key
                if not api_key and self._conf.api_key_env:
                    api_key = os.environ.get(self._conf.api_key_env)
                if not api_key:
                    raise SourceAccessError(
                        "No Google Sheets credentials configured; set credentials_file or an API key"
                    )
                self._service = build("sheets", "v4", developerKey=api_key)
            LOGGER.debug("Google Sheets service initialized")
        return self._service

    # Reading -----------------------------------------------------------------
    def fetch_grid(self, source: str, sheet_name: str | None = None) -> List[List[str]]:
        """Load the raw cell grid of a campaign sheet."""

        spreadsheet_id = extract_spreadsheet_id(source)
        tab = sheet_name or self._conf.default_sheet_name
        target_range = _a1_range(tab, self._conf.read_range)

        def _build_request() -> HttpRequest:
            service = self._service_client()
            return (
                service.spreadsheets()
                .values()
                .get(spreadsheetId=spreadsheet_id, range=target_range)
            )

        try:
            result = self._execute_with_retry(_build_request, operation="fetch campaign grid")
        except HttpError as exc:
            status = getattr(exc.resp, "status", None)
            raise SourceAccessError(
                f"Unable to access Google Sheet {spreadsheet_id} (HTTP {status}): {exc}"
            ) from exc
        except (GoogleAuthError, OSError, ValueError, *_RETRYABLE_EXCEPTIONS) as exc:
            raise SourceAccessError(
                f"Unable to access Google Sheet {spreadsheet_id}: {exc}"
            ) from exc

        values = result.get("values", [])
        LOGGER.debug(
            "Raw sheet data captured: %s rows, %s max columns",
            len(values),
            max((len(row) for row in values), default=0),
        )
        return values

    # Writing -----------------------------------------------------------------
    def write_report(self, values: Iterable[Iterable[str]]) -> None:
        """Replace the report sheet content with the provided rows."""

        if not self._conf.has_report_target:
            raise ValueError("No report spreadsheet configured")

        spreadsheet_id = self._conf.report_spreadsheet_id
        sheet_name = self._conf.report_sheet_name
        payload = {"values": [list(row) for row in values]}

        def _clear_request() -> HttpRequest:
            service = self._service_client()
            return (
                service.spreadsheets()
                .values()
                .clear(spreadsheetId=spreadsheet_id, range=_a1_range(sheet_name))
            )

        def _update_request() -> HttpRequest:
            service = self._service_client()
            return (
                service.spreadsheets()
                .values()
                .update(
                    spreadsheetId=spreadsheet_id,
                    range=_a1_range(sheet_name, "A1"),
                    valueInputOption="USER_ENTERED",
                    body=payload,
                )
            )

        self._execute_with_retry(_clear_request, operation="clear report sheet")
        self._execute_with_retry(_update_request, operation="write report sheet")

    # Internal ----------------------------------------------------------------
    def _reset_service(self) -> None:
        self._service = None

    def _execute_with_retry(
        self,
        request_builder: Callable[[], HttpRequest],
        *,
        operation: str,
    ) -> dict:
        """Execute a Sheets API request with retries for transient failures."""

        backoff = _INITIAL_BACKOFF_SECONDS
        last_exc: Exception | None = None

        for attempt in range(1, _MAX_RETRY_ATTEMPTS + 1):
            try:
                return request_builder().execute()
            except _RETRYABLE_EXCEPTIONS as exc:
                last_exc = exc
            except HttpError as exc:
                status = getattr(exc.resp, "status", None)
                if status not in _RETRYABLE_STATUS_CODES:
                    raise
                last_exc = exc

            if attempt == _MAX_RETRY_ATTEMPTS:
                raise last_exc

            wait_time = min(backoff, _MAX_BACKOFF_SECONDS)
            LOGGER.warning(
                "Sheets API %s failed on attempt %s/%s (%s); retrying in %.1f seconds",
                operation,
                attempt,
                _MAX_RETRY_ATTEMPTS,
                last_exc,
                wait_time,
            )
            self._reset_service()
            time.sleep(wait_time)
            backoff *= 2

        raise RuntimeError("Sheets API request failed without capturing an exception")
