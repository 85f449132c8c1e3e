"""Spreadsheet-backed row store (Google Sheets via gspread)."""

from __future__ import annotations

import abc
import asyncio
import json
import logging
from typing import Dict, List, Optional, Sequence

import gspread
from google.auth.exceptions import GoogleAuthError
from google.oauth2.service_account import Credentials

LOG = logging.getLogger("ont_stock_bot.sheets")

SHEET_STOCK = "STOCK ONT"
SHEET_MONITORING = "NTE MONITORING"
SHEET_USER = "USER"

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

Rows = List[List[str]]


class RowStoreError(Exception):
    """A read or write against the spreadsheet failed."""


class RowStore(abc.ABC):
    """What the bot needs from a spreadsheet: whole-sheet reads and two writes."""

    @abc.abstractmethod
    async def get_rows(self, sheet: str) -> Rows:
        raise NotImplementedError

    @abc.abstractmethod
    async def append_row(self, sheet: str, values: Sequence[str]) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def update_cell(self, sheet: str, address: str, value: str) -> None:
        raise NotImplementedError


def parse_service_account(raw: str) -> Dict[str, str]:
    """Decode the service-account JSON kept in an env variable."""
    try:
        info = json.loads(raw)
    except ValueError as e:
        raise ValueError(f"service account key is not valid JSON: {e}") from e
    if not isinstance(info, dict) or not info.get("client_email"):
        raise ValueError("client_email missing from service account key")
    return info


class SheetsRowStore(RowStore):
    def __init__(self, sheet_id: str, service_account_info: Dict[str, str]):
        self.sheet_id = sheet_id
        self._creds = Credentials.from_service_account_info(service_account_info, scopes=SCOPES)
        self._spreadsheet: Optional[gspread.Spreadsheet] = None

    def _worksheet(self, sheet: str) -> gspread.Worksheet:
        if self._spreadsheet is None:
            gc = gspread.authorize(self._creds)
            self._spreadsheet = gc.open_by_key(self.sheet_id)
        return self._spreadsheet.worksheet(sheet)

    async def _run(self, what: str, fn, *args):
        # gspread is blocking; keep the event loop free.
        try:
            return await asyncio.to_thread(fn, *args)
        except (gspread.exceptions.GSpreadException, GoogleAuthError, OSError) as e:
            LOG.error("Sheets %s failed: %s", what, e)
            raise RowStoreError(f"{what} failed") from e

    async def get_rows(self, sheet: str) -> Rows:
        def _read() -> Rows:
            return self._worksheet(sheet).get_all_values()

        return await self._run(f"read {sheet}", _read)

    async def append_row(self, sheet: str, values: Sequence[str]) -> None:
        def _append() -> None:
            self._worksheet(sheet).append_row(list(values), value_input_option="USER_ENTERED")

        await self._run(f"append {sheet}", _append)

    async def update_cell(self, sheet: str, address: str, value: str) -> None:
        def _update() -> None:
            self._worksheet(sheet).update_acell(address, value)

        await self._run(f"update {sheet}!{address}", _update)
