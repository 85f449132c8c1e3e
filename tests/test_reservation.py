import asyncio

import pytest

from conftest import MONITORING_HEADER, STOCK_HEADER
from reservation import (
    Outcome,
    count_outcomes,
    format_result,
    is_user_authorized,
    parse_serials,
    plan_reservations,
    reserve_serials,
    user_is_active,
)
from sheets import SHEET_MONITORING, SHEET_STOCK, SHEET_USER, RowStoreError

TS1 = "18/10/2026, 09.00.00"
TS2 = "18/10/2026, 09.05.00"


def test_parse_serials_uppercases_and_drops_blank_lines():
    assert parse_serials(" zte001 \n\n  stb001\n   ") == ["ZTE001", "STB001"]
    assert parse_serials("") == []


def test_user_is_active(store):
    rows = store.sheets[SHEET_USER]
    assert user_is_active(rows, "@bob")
    assert user_is_active(rows, "@BOB ")
    assert not user_is_active(rows, "@eve")
    assert not user_is_active(rows, "@nobody")
    # header row never authorizes
    assert not user_is_active([["", "USERNAME", "", "AKTIF"]], "USERNAME")


def test_status_must_be_exactly_aktif():
    rows = [["NO", "USERNAME", "NAMA", "STATUS"], ["1", "@bob", "Bob", "aktif"], ["2", "@amy", "Amy", " AKTIF"]]
    assert not user_is_active(rows, "@bob")
    assert not user_is_active(rows, "@amy")


def test_authorization_store_failure_denies(store):
    store.fail_on.add(SHEET_USER)
    assert asyncio.run(is_user_authorized(store, "@bob")) is False


def test_reserve_new_serial_writes_monitoring_and_stock(store):
    results = asyncio.run(reserve_serials(store, ["ZTE001"], "@bob", TS1))

    assert [r.outcome for r in results] == [Outcome.RESERVED]
    assert store.appends == [
        (
            SHEET_MONITORING,
            [TS1, "@bob", "ZTE001", "STB001", "", "123", "TIF", "F670", "BDG", "TECHNISIAN - @bob"],
        )
    ]
    assert store.updates == [(SHEET_STOCK, "H2", "TECHNISIAN - @bob")]
    assert store.sheets[SHEET_STOCK][1][7] == "TECHNISIAN - @bob"


def test_match_any_serial_column_case_insensitive(store):
    results = asyncio.run(reserve_serials(store, ["STB001", "HW003"], "@bob", TS1))
    assert [r.outcome for r in results] == [Outcome.RESERVED, Outcome.RESERVED]
    assert [u[1] for u in store.updates] == ["H2", "H4"]


def test_already_used_reports_prior_usage(store):
    results = asyncio.run(reserve_serials(store, ["AP002"], "@bob", TS1))
    assert results[0].outcome is Outcome.ALREADY_USED
    assert (results[0].used_by, results[0].used_at) == ("@old", "01/10/2026, 08.00.00")
    assert store.appends == [] and store.updates == []


def test_unknown_serial_not_found_without_writes(store):
    results = asyncio.run(reserve_serials(store, ["NOPE"], "@bob", TS1))
    assert results[0].outcome is Outcome.NOT_FOUND
    assert store.appends == [] and store.updates == []


def test_second_request_sees_first_reservation(store):
    first = asyncio.run(reserve_serials(store, ["ZTE001"], "@bob", TS1))
    second = asyncio.run(reserve_serials(store, ["ZTE001"], "@amy", TS2))

    assert first[0].outcome is Outcome.RESERVED
    assert second[0].outcome is Outcome.ALREADY_USED
    assert (second[0].used_by, second[0].used_at) == ("@bob", TS1)
    assert len(store.appends) == 1
    assert len(store.sheets[SHEET_MONITORING]) == 3


def test_repeated_serial_in_one_request_reserved_once(store):
    results = asyncio.run(reserve_serials(store, ["ZTE001", "ZTE001"], "@bob", TS1))
    assert [r.outcome for r in results] == [Outcome.RESERVED, Outcome.ALREADY_USED]
    assert (results[1].used_by, results[1].used_at) == ("@bob", TS1)
    assert len(store.appends) == 1
    assert len(store.updates) == 1


def test_results_keep_input_order(store):
    results = asyncio.run(reserve_serials(store, ["NOPE", "AP002", "ZTE001"], "@bob", TS1))
    assert [r.serial for r in results] == ["NOPE", "AP002", "ZTE001"]
    assert [r.outcome for r in results] == [Outcome.NOT_FOUND, Outcome.ALREADY_USED, Outcome.RESERVED]
    counts = count_outcomes(results)
    assert counts == {Outcome.NOT_FOUND: 1, Outcome.ALREADY_USED: 1, Outcome.RESERVED: 1}


def test_plan_against_empty_monitoring_sheet():
    stock = [STOCK_HEADER, ["ZTE9", "", "", "", "", "", "", ""]]
    results = plan_reservations(["ZTE9", "ZTE9"], stock, [], "@bob", TS1)
    assert [r.outcome for r in results] == [Outcome.RESERVED, Outcome.ALREADY_USED]


def test_plan_ignores_header_rows():
    stock = [["ZTE9", "", "", "", "", "", "", ""]]
    monitoring = [MONITORING_HEADER]
    assert plan_reservations(["ZTE9"], stock, monitoring, "@bob", TS1)[0].outcome is Outcome.NOT_FOUND


def test_format_result_messages(store):
    results = asyncio.run(reserve_serials(store, ["NOPE", "AP002", "HW003"], "@bob", TS1))
    not_found, used, reserved = (format_result(r, "@bob") for r in results)
    assert not_found == "❌ SN NOPE tidak ditemukan di STOCK ONT."
    assert used == "⚠️ SN AP002 sudah pernah digunakan!\n➡️ Oleh: @old pada 01/10/2026, 08.00.00"
    assert reserved == (
        "✅ SN Ditemukan & disimpan:\n"
        "SN ONT: hw003 \n"
        "SN STB: -\n"
        "SN AP: -\n"
        "NIK: 125\n"
        "OWNER: MITRA\n"
        "TYPE: HG8245\n"
        "SEKTOR: CMH\n"
        "STATUS: TECHNISIAN - @bob"
    )


def test_failed_status_update_keeps_monitoring_record(store):
    store.fail_ops.add("update_cell")
    with pytest.raises(RowStoreError):
        asyncio.run(reserve_serials(store, ["ZTE001", "HW003"], "@bob", TS1))

    # the append landed, the stock status did not, and HW003 was never reached
    assert store.appends == [
        (
            SHEET_MONITORING,
            [TS1, "@bob", "ZTE001", "STB001", "", "123", "TIF", "F670", "BDG", "TECHNISIAN - @bob"],
        )
    ]
    assert store.updates == []
    assert store.sheets[SHEET_STOCK][1][7] == ""

    store.fail_ops.clear()
    again = asyncio.run(reserve_serials(store, ["ZTE001"], "@amy", TS2))
    assert again[0].outcome is Outcome.ALREADY_USED
    assert (again[0].used_by, again[0].used_at) == ("@bob", TS1)
