"""Reconciliation engine: diffing, submission cap, and audit row placement."""

import copy

import pytest

from app.core.exceptions import InvalidTokenError, SubmissionLimitError
from app.domain.record import HEADERS
from app.services.reconciliation import MATCH, MISMATCH, allowed_fields, compare, reconcile_table
from app.services.tokens import build_token_link
from conftest import BASE_URL, NOW, OTHER_TOKEN, TOKEN, make_row, make_table

EDITABLE = [
    "Full Name", "Phone Number", "Country/Region Code", "State/Province/Region",
    "City", "Address1", "Address2", "Zip Code", "Email",
]


def _reconcile(table, address, token=TOKEN, **kwargs):
    kwargs.setdefault("max_submissions", 3)
    kwargs.setdefault("editable_fields", EDITABLE)
    return reconcile_table(table, token, address, now=NOW, base_url=BASE_URL, **kwargs)


def test_changed_city_is_a_mismatch() -> None:
    table = make_table(make_row())

    entry = _reconcile(table, {"Full Name": "Jane", "City": "Sparks", "Email": "j@x.com"})

    assert entry.comparison.match_status == MISMATCH
    assert entry.comparison.changed_fields == ["City"]
    assert entry.comparison.changed_values == ["City: Reno -> Sparks"]


def test_identical_submission_is_a_match_and_still_counts() -> None:
    table = make_table(make_row())

    entry = _reconcile(table, {"Full Name": "Jane", "City": "Reno", "Email": "j@x.com"})

    assert entry.comparison.match_status == MATCH
    assert entry.comparison.changed_fields == []
    assert entry.comparison.changed_values == []
    assert table.submission_count(("A1", "B1")) == 1


def test_values_are_compared_as_text() -> None:
    table = make_table(make_row(**{"Zip Code": "02134", "Phone Number": "12"}))

    entry = _reconcile(table, {
        "Full Name": "Jane", "City": "Reno", "Email": "j@x.com",
        "Zip Code": "2134", "Phone Number": 12,
    })

    assert entry.comparison.changed_fields == ["Zip Code"]
    assert entry.comparison.changed_values == ["Zip Code: 02134 -> 2134"]


def test_missing_and_null_submitted_values_count_as_empty() -> None:
    table = make_table(make_row(Address2="Apt 4"))

    entry = _reconcile(table, {"Full Name": "Jane", "City": "Reno", "Email": None})

    assert entry.comparison.changed_fields == ["Address2", "Email"]
    assert entry.comparison.changed_values == ["Address2: Apt 4 -> ", "Email: j@x.com -> "]


def test_partial_submission_keeps_unsent_fields() -> None:
    table = make_table(make_row(**{"Address1": "1 Main St", "Zip Code": "89501"}))

    entry = _reconcile(table, {"City": "Sparks", "Email": None})

    assert entry.submitted == {"City": "Sparks", "Email": ""}
    original, audit = table.rows
    for row in (original, audit):
        assert row["*City"] == "Sparks"
        assert row["Email"] == ""
        assert row["*Full Name"] == "Jane"
        assert row["*Address1"] == "1 Main St"
        assert row["Zip Code"] == "89501"


def test_changed_fields_follow_allowlist_order() -> None:
    comparison = compare(
        {"City": "Reno", "Full Name": "Jane"},
        {"Full Name": "Janet", "City": "Sparks"},
        ["Full Name", "City"],
    )
    assert comparison.changed_fields == ["Full Name", "City"]


def test_non_editable_fields_are_never_changed() -> None:
    table = make_table(make_row(**{"Total Payment": "99"}))

    entry = _reconcile(table, {
        "Order Number": "HACKED", "Total Payment": "0",
        "Full Name": "Jane", "City": "Sparks", "Email": "j@x.com",
    })

    original, audit = table.rows
    assert entry.comparison.changed_fields == ["City"]
    for row in (original, audit):
        assert row["*Order Number"] == "A1"
        assert row["Total Payment"] == "99"


def test_fields_missing_from_the_sheet_are_ignored() -> None:
    table = make_table(make_row())
    table.present_labels = frozenset(h for h in HEADERS if h != "Phone Number")

    assert "Phone Number" not in allowed_fields(table, EDITABLE)

    entry = _reconcile(table, {
        "Full Name": "Jane", "City": "Reno", "Email": "j@x.com", "Phone Number": "555",
    })
    assert entry.comparison.match_status == MATCH
    assert table.rows[1]["Phone Number"] == ""


def test_audit_row_is_inserted_right_after_the_original() -> None:
    table = make_table(
        make_row(token="x" * 32, **{"Order Number": "A0"}),
        make_row(),
        make_row(token=OTHER_TOKEN, **{"Order Number": "A2"}),
    )

    entry = _reconcile(table, {"Full Name": "Jane", "City": "Sparks", "Email": "j@x.com"})

    assert [row["*Order Number"] for row in table.rows] == ["A0", "A1", "A1", "A2"]
    original, audit = table.rows[1], table.rows[2]
    assert original["*City"] == "Sparks"
    assert original["Token Link"] == build_token_link(TOKEN, BASE_URL)
    assert original["Match Status"] == ""
    assert audit["*City"] == "Sparks"
    assert audit["Match Status"] == MISMATCH
    assert audit["Changed Fields"] == "City"
    assert audit["Changed Values"] == "City: Reno -> Sparks"
    assert audit["Submitted At"] == "2026-01-10T12:00:00.000Z"
    assert audit["Token Link"] == entry.token_link
    assert audit["Token Expires"] == original["Token Expires"]


def test_later_submissions_insert_directly_below_the_original() -> None:
    table = make_table(make_row(), make_row(token=OTHER_TOKEN, **{"Order Number": "A2"}))

    _reconcile(table, {"Full Name": "Jane", "City": "Sparks", "Email": "j@x.com"})
    _reconcile(table, {"Full Name": "Jane", "City": "Carson", "Email": "j@x.com"})

    assert [row["*City"] for row in table.rows[:3]] == ["Carson", "Carson", "Sparks"]
    assert table.rows[1]["Changed Values"] == "City: Sparks -> Carson"
    assert table.rows[3]["*Order Number"] == "A2"


def test_legacy_share_link_is_rewritten_to_canonical_form() -> None:
    row = make_row()
    row["Token Link"] = f"https://share.example/s?token={TOKEN}"
    table = make_table(row)

    _reconcile(table, {"Full Name": "Jane", "City": "Reno", "Email": "j@x.com"})

    assert table.rows[0]["Token Link"] == build_token_link(TOKEN, BASE_URL)


def test_submission_cap_rejects_without_touching_the_table() -> None:
    table = make_table(make_row())
    for city in ("One", "Two", "Three"):
        _reconcile(table, {"Full Name": "Jane", "City": city, "Email": "j@x.com"})
    before = copy.deepcopy(table.rows)

    with pytest.raises(SubmissionLimitError) as exc_info:
        _reconcile(table, {"Full Name": "Jane", "City": "Four", "Email": "j@x.com"})

    assert exc_info.value.message == "Submission limit reached (max 3)."
    assert exc_info.value.status_code == 429
    assert table.rows == before


def test_unknown_token_leaves_table_untouched() -> None:
    table = make_table(make_row())
    before = copy.deepcopy(table.rows)

    with pytest.raises(InvalidTokenError):
        _reconcile(table, {"City": "Sparks"}, token=OTHER_TOKEN)

    assert table.rows == before
