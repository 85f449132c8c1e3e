"""Serial number lookup and reservation against the STOCK / MONITORING sheets.

Matching is done in two phases: :func:`plan_reservations` decides an outcome
for every requested serial from in-memory snapshots of both sheets, then
:func:`apply_reservations` performs the writes in request order.

There is no locking. Two requests reserving the same serial at the same time
both read the sheets before either writes, so both may succeed and the
monitoring sheet ends up with two records for one device.
"""

from __future__ import annotations

import enum
import html
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from sheets import SHEET_MONITORING, SHEET_STOCK, SHEET_USER, RowStore, RowStoreError

LOG = logging.getLogger("ont_stock_bot.reservation")

STOCK_SERIAL_COLUMNS = (0, 1, 2)
MONITORING_SERIAL_COLUMNS = (2, 3, 4)
# Monitoring copies stock columns A..G (serials, NIK, owner, type, sector).
COPIED_STOCK_COLUMNS = 7
STATUS_COLUMN_LETTER = "H"
ACTIVE_USER = "AKTIF"


def reservation_marker(username: str) -> str:
    return f"TECHNISIAN - {username}"


def _cell(row: Sequence[str], idx: int) -> str:
    return str(row[idx] or "") if idx < len(row) else ""


def _norm(value: str) -> str:
    return value.strip().upper()


def parse_serials(text: str) -> List[str]:
    return [sn.strip() for sn in text.upper().split("\n") if sn.strip()]


# ---------- Authorization ----------
def user_is_active(rows: Sequence[Sequence[str]], username: str) -> bool:
    wanted = _norm(username)
    return any(
        _norm(_cell(row, 1)) == wanted and _cell(row, 3) == ACTIVE_USER
        for row in rows[1:]
    )


async def is_user_authorized(store: RowStore, username: str) -> bool:
    try:
        rows = await store.get_rows(SHEET_USER)
    except RowStoreError:
        LOG.exception("Authorization lookup failed for %s", username)
        return False
    return user_is_active(rows, username)


# ---------- Matching ----------
class Outcome(enum.Enum):
    NOT_FOUND = "not_found"
    ALREADY_USED = "already_used"
    RESERVED = "reserved"


@dataclass
class SerialResult:
    serial: str
    outcome: Outcome
    stock_row: List[str] = field(default_factory=list)
    # 0-based index into the stock sheet, header included
    stock_index: Optional[int] = None
    used_by: str = ""
    used_at: str = ""


def find_row(rows: Sequence[Sequence[str]], columns: Sequence[int], serial: str) -> Optional[int]:
    for i, row in enumerate(rows):
        if i == 0:
            continue
        if any(_norm(_cell(row, c)) == serial for c in columns):
            return i
    return None


def monitoring_record(stock_row: Sequence[str], username: str, timestamp: str) -> List[str]:
    return (
        [timestamp, username]
        + [_cell(stock_row, i) for i in range(COPIED_STOCK_COLUMNS)]
        + [reservation_marker(username)]
    )


def plan_reservations(
    serials: Sequence[str],
    stock_rows: Sequence[Sequence[str]],
    monitoring_rows: Sequence[Sequence[str]],
    username: str,
    timestamp: str,
) -> List[SerialResult]:
    """Decide one outcome per serial, in input order. Does not write anything."""
    # Index 0 stays the header slot, even for an empty sheet.
    monitoring = [list(r) for r in monitoring_rows] or [[]]
    results: List[SerialResult] = []

    for sn in serials:
        stock_index = find_row(stock_rows, STOCK_SERIAL_COLUMNS, sn)
        if stock_index is None:
            results.append(SerialResult(sn, Outcome.NOT_FOUND))
            continue

        stock_row = list(stock_rows[stock_index])
        used_index = find_row(monitoring, MONITORING_SERIAL_COLUMNS, sn)
        if used_index is not None:
            used = monitoring[used_index]
            results.append(
                SerialResult(
                    sn,
                    Outcome.ALREADY_USED,
                    stock_row=stock_row,
                    stock_index=stock_index,
                    used_by=_cell(used, 1),
                    used_at=_cell(used, 0),
                )
            )
            continue

        # Seen by later serials in this same request.
        monitoring.append(monitoring_record(stock_row, username, timestamp))
        results.append(SerialResult(sn, Outcome.RESERVED, stock_row=stock_row, stock_index=stock_index))
    return results


async def apply_reservations(
    store: RowStore, results: Sequence[SerialResult], username: str, timestamp: str
) -> None:
    marker = reservation_marker(username)
    for res in results:
        if res.outcome is not Outcome.RESERVED:
            continue
        await store.append_row(SHEET_MONITORING, monitoring_record(res.stock_row, username, timestamp))
        await store.update_cell(SHEET_STOCK, f"{STATUS_COLUMN_LETTER}{res.stock_index + 1}", marker)
        LOG.info("Reserved %s to %s (stock row %d)", res.serial, username, res.stock_index + 1)


async def reserve_serials(
    store: RowStore, serials: Sequence[str], username: str, timestamp: str
) -> List[SerialResult]:
    stock_rows = await store.get_rows(SHEET_STOCK)
    monitoring_rows = await store.get_rows(SHEET_MONITORING)
    results = plan_reservations(serials, stock_rows, monitoring_rows, username, timestamp)
    await apply_reservations(store, results, username, timestamp)
    return results


# ---------- Messages ----------
def format_result(res: SerialResult, username: str) -> str:
    sn = html.escape(res.serial)
    if res.outcome is Outcome.NOT_FOUND:
        return f"❌ SN {sn} tidak ditemukan di {SHEET_STOCK}."
    if res.outcome is Outcome.ALREADY_USED:
        return (
            f"⚠️ SN {sn} sudah pernah digunakan!\n"
            f"➡️ Oleh: {html.escape(res.used_by)} pada {html.escape(res.used_at)}"
        )
    row = [html.escape(_cell(res.stock_row, i)) or "-" for i in range(COPIED_STOCK_COLUMNS)]
    return (
        "✅ SN Ditemukan & disimpan:\n"
        f"SN ONT: {row[0]}\n"
        f"SN STB: {row[1]}\n"
        f"SN AP: {row[2]}\n"
        f"NIK: {row[3]}\n"
        f"OWNER: {row[4]}\n"
        f"TYPE: {row[5]}\n"
        f"SEKTOR: {row[6]}\n"
        f"STATUS: {html.escape(reservation_marker(username))}"
    )


def count_outcomes(results: Sequence[SerialResult]) -> Dict[Outcome, int]:
    counts = {o: 0 for o in Outcome}
    for res in results:
        counts[res.outcome] += 1
    return counts
