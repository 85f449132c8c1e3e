"""Pivot of the STOCK ONT sheet: sector -> owner -> type, stock vs technisian."""

from __future__ import annotations

import html
import io
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

import pandas as pd

RESERVATION_MARKER = "TECHNISIAN"
# Status is read from column H regardless of the header row.
STATUS_COLUMN = 7

SECTOR_HEADER = "SEKTOR"
OWNER_HEADER = "OWNER"
TYPE_HEADER = "TYPE"

TITLE = "📊 <b>REKAP PIVOT STOCK & TECHNISIAN</b>"
HEADER_LINE = "SEKTOR     | OWNER  | TYPE | STOCK | TECH | TOTAL"
RULE_LINE = "-----------+--------+------+-------+------+------"


class EmptySheetError(Exception):
    """Raised when the stock sheet has no data rows."""


@dataclass
class PivotCell:
    stock: int = 0
    technisian: int = 0

    @property
    def total(self) -> int:
        return self.stock + self.technisian


PivotTable = Dict[str, Dict[str, Dict[str, PivotCell]]]


# ---------- Aggregation ----------
def _cell(row: Sequence[str], idx: int) -> str:
    if idx < 0 or idx >= len(row):
        return ""
    return str(row[idx] or "")


def _header_index(headers: Sequence[str], name: str) -> int:
    try:
        return list(headers).index(name)
    except ValueError:
        return -1


def is_reserved(status: str) -> bool:
    # Empty and "-" statuses fall through to stock.
    return RESERVATION_MARKER in status


def build_pivot(rows: Sequence[Sequence[str]]) -> PivotTable:
    if len(rows) < 2:
        raise EmptySheetError("stock sheet has no data rows")

    headers = rows[0]
    idx_sector = _header_index(headers, SECTOR_HEADER)
    idx_owner = _header_index(headers, OWNER_HEADER)
    idx_type = _header_index(headers, TYPE_HEADER)

    pivot: PivotTable = {}
    for row in rows[1:]:
        sector = _cell(row, idx_sector) or "-"
        owner = _cell(row, idx_owner) or "-"
        type_ = _cell(row, idx_type) or "-"
        status = _cell(row, STATUS_COLUMN).strip()

        cell = pivot.setdefault(sector, {}).setdefault(owner, {}).setdefault(type_, PivotCell())
        if is_reserved(status):
            cell.technisian += 1
        else:
            cell.stock += 1
    return pivot


# ---------- Rendering ----------
def fit(value: str, width: int) -> str:
    """Cut to ``width - 1`` chars plus a dot when too long, else pad right."""
    if len(value) > width:
        return value[: width - 1] + "."
    return value.ljust(width)


def _numbers(stock: int, tech: int, total: int) -> str:
    return f"{stock:>5} | {tech:>4} | {total:>5}"


def render_table(pivot: PivotTable) -> Tuple[List[str], PivotCell]:
    """Fixed-width table lines (no markup) and the grand totals."""
    lines = [HEADER_LINE, RULE_LINE]
    grand = PivotCell()

    for sector, owners in pivot.items():
        sub = PivotCell()
        for owner, types in owners.items():
            for type_, cell in types.items():
                sub.stock += cell.stock
                sub.technisian += cell.technisian
                lines.append(
                    f"{fit(sector, 10)} | {fit(owner, 7)} | {fit(type_, 5)} | "
                    + _numbers(cell.stock, cell.technisian, cell.total)
                )
        lines.append(
            f"{sector.ljust(10)} | TOTAL  |      | " + _numbers(sub.stock, sub.technisian, sub.total)
        )
        lines.append(RULE_LINE)
        grand.stock += sub.stock
        grand.technisian += sub.technisian

    lines.append("GRAND TOTAL|        |      | " + _numbers(grand.stock, grand.technisian, grand.total))
    return lines, grand


def render_report(pivot: PivotTable) -> str:
    """Chat message (Telegram HTML) for the pivot."""
    lines, grand = render_table(pivot)
    table = html.escape("\n".join(lines) + "\n", quote=False)
    return (
        f"{TITLE}\n\n"
        f"<pre>{table}</pre>\n\n"
        "📈 <b>Summary:</b>\n"
        f"• Total Stock Tersedia: {grand.stock}\n"
        f"• Total Digunakan Technisian: {grand.technisian}\n"
        f"• Grand Total: {grand.total}"
    )


# ---------- Export ----------
def pivot_frame(pivot: PivotTable) -> pd.DataFrame:
    records = [
        {
            "SEKTOR": sector,
            "OWNER": owner,
            "TYPE": type_,
            "STOCK": cell.stock,
            "TECH": cell.technisian,
            "TOTAL": cell.total,
        }
        for sector, owners in pivot.items()
        for owner, types in owners.items()
        for type_, cell in types.items()
    ]
    return pd.DataFrame(records, columns=["SEKTOR", "OWNER", "TYPE", "STOCK", "TECH", "TOTAL"])


def export_xlsx(pivot: PivotTable) -> io.BytesIO:
    df = pivot_frame(pivot)
    bio = io.BytesIO()
    with pd.ExcelWriter(bio, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name="Pivot")
    bio.seek(0)
    return bio
