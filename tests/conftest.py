import re
from typing import Dict, List

import pytest

from sheets import SHEET_MONITORING, SHEET_STOCK, SHEET_USER, RowStore, RowStoreError

STOCK_HEADER = ["SN ONT", "SN STB", "SN AP", "NIK", "OWNER", "TYPE", "SEKTOR", "STATUS"]
MONITORING_HEADER = [
    "WAKTU", "USER", "SN ONT", "SN STB", "SN AP", "NIK", "OWNER", "TYPE", "SEKTOR", "STATUS",
]
USER_HEADER = ["NO", "USERNAME", "NAMA", "STATUS"]


class FakeStore(RowStore):
    """In-memory sheets; records every write."""

    def __init__(self, sheets: Dict[str, List[List[str]]]):
        self.sheets = {name: [list(r) for r in rows] for name, rows in sheets.items()}
        self.appends: List[tuple] = []
        self.updates: List[tuple] = []
        self.fail_on: set = set()
        # operation names ("append_row", "update_cell") that should fail
        self.fail_ops: set = set()

    def _check(self, sheet, op="get_rows"):
        if sheet in self.fail_on or op in self.fail_ops:
            raise RowStoreError(f"{op} {sheet} failed")

    async def get_rows(self, sheet):
        self._check(sheet)
        return [list(r) for r in self.sheets.get(sheet, [])]

    async def append_row(self, sheet, values):
        self._check(sheet, "append_row")
        self.appends.append((sheet, list(values)))
        self.sheets.setdefault(sheet, []).append(list(values))

    async def update_cell(self, sheet, address, value):
        self._check(sheet, "update_cell")
        self.updates.append((sheet, address, value))
        m = re.fullmatch(r"([A-Z])(\d+)", address)
        col, row = ord(m.group(1)) - ord("A"), int(m.group(2)) - 1
        target = self.sheets[sheet][row]
        target.extend([""] * (col + 1 - len(target)))
        target[col] = value


class FakeSender:
    def __init__(self, fail: bool = False):
        self.calls: List[dict] = []
        self.fail = fail

    async def __call__(self, **kwargs):
        if self.fail:
            raise RuntimeError("telegram down")
        self.calls.append(kwargs)

    def texts(self, chat_id=None):
        return [c["text"] for c in self.calls if chat_id is None or c["chat_id"] == chat_id]


@pytest.fixture()
def store():
    return FakeStore(
        {
            SHEET_STOCK: [
                STOCK_HEADER,
                ["ZTE001", "STB001", "", "123", "TIF", "F670", "BDG", ""],
                ["ZTE002", "", "AP002", "124", "TIF", "F670", "BDG", "TECHNISIAN - @old"],
                ["hw003 ", "", "", "125", "MITRA", "HG8245", "CMH", "-"],
            ],
            SHEET_MONITORING: [
                MONITORING_HEADER,
                ["01/10/2026, 08.00.00", "@old", "ZTE002", "", "AP002", "124", "TIF", "F670", "BDG",
                 "TECHNISIAN - @old"],
            ],
            SHEET_USER: [
                USER_HEADER,
                ["1", " @Bob ", "Bob", "AKTIF"],
                ["2", "@eve", "Eve", "NONAKTIF"],
            ],
        }
    )
