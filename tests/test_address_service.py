"""AddressService read path and reconcile-and-persist write path."""

import asyncio
from datetime import timedelta

import pytest

from app.core.exceptions import (
    InvalidTokenError,
    SubmissionLimitError,
    TokenExpiredError,
    UpstreamWriteError,
    ValidationError,
)
from app.services.reconciliation import MISMATCH
from conftest import NOW, OTHER_TOKEN, TOKEN, FakeStore, make_row, make_service

ADDRESS = {"Full Name": "Jane", "City": "Sparks", "Email": "j@x.com"}


def test_fetch_record_returns_public_fields(store) -> None:
    record = asyncio.run(make_service(store).fetch_record(TOKEN))

    assert record["Order Number"] == "A1"
    assert record["Backer No."] == "B1"
    assert record["City"] == "Reno"
    assert "*City" not in record
    assert store.saves == 0


def test_fetch_record_is_idempotent(store) -> None:
    service = make_service(store)
    first = asyncio.run(service.fetch_record(TOKEN))
    second = asyncio.run(service.fetch_record(TOKEN))
    assert first == second


def test_fetch_record_serves_the_most_recent_row(store) -> None:
    service = make_service(store)
    asyncio.run(service.update_address(TOKEN, ADDRESS))
    store.rows[1]["Match Status"] = "MISMATCH-latest"

    record = asyncio.run(service.fetch_record(TOKEN))

    assert record["City"] == "Sparks"
    assert record["Match Status"] == "MISMATCH-latest"


def test_fetch_record_invalid_and_expired_tokens() -> None:
    store = FakeStore([make_row(expire=NOW - timedelta(days=1))])
    service = make_service(store)

    with pytest.raises(InvalidTokenError):
        asyncio.run(service.fetch_record(OTHER_TOKEN))
    with pytest.raises(TokenExpiredError):
        asyncio.run(service.fetch_record(TOKEN))


def test_update_address_persists_and_returns_comparison(store) -> None:
    comparison = asyncio.run(make_service(store).update_address(TOKEN, ADDRESS))

    assert comparison.match_status == MISMATCH
    assert comparison.changed_fields == ["City"]
    assert store.saves == 1
    assert [row["*Order Number"] for row in store.rows] == ["A1", "A1", "A2"]


def test_update_address_requires_token_and_address(store) -> None:
    service = make_service(store)

    with pytest.raises(ValidationError):
        asyncio.run(service.update_address("", ADDRESS))
    with pytest.raises(ValidationError):
        asyncio.run(service.update_address(TOKEN, None))
    assert store.loads == 0


def test_cap_is_reached_after_max_submissions(store) -> None:
    service = make_service(store)
    for _ in range(3):
        asyncio.run(service.update_address(TOKEN, ADDRESS))
    rows_before = [dict(row) for row in store.rows]

    with pytest.raises(SubmissionLimitError):
        asyncio.run(service.update_address(TOKEN, ADDRESS))

    assert store.saves == 3
    assert store.rows == rows_before


def test_cap_is_configurable(store) -> None:
    service = make_service(store, max_submissions=1)
    asyncio.run(service.update_address(TOKEN, ADDRESS))
    with pytest.raises(SubmissionLimitError) as exc_info:
        asyncio.run(service.update_address(TOKEN, ADDRESS))
    assert exc_info.value.message == "Submission limit reached (max 1)."


def test_version_conflict_rereads_and_keeps_the_other_write(store) -> None:
    def other_backer_submits(rows):
        rows.append(make_row(token=OTHER_TOKEN, **{"Order Number": "A2", "Backer No.": "B2"}))

    store.concurrent_writes.append(other_backer_submits)

    asyncio.run(make_service(store).update_address(TOKEN, ADDRESS))

    assert store.loads == 2
    assert store.saves == 1
    assert [row["*Order Number"] for row in store.rows] == ["A1", "A1", "A2", "A2"]


def test_cap_is_rechecked_after_a_conflict(store) -> None:
    service = make_service(store, max_submissions=1)

    def same_backer_submits(rows):
        rows.insert(1, make_row(City="Elsewhere"))

    store.concurrent_writes.append(same_backer_submits)

    with pytest.raises(SubmissionLimitError):
        asyncio.run(service.update_address(TOKEN, ADDRESS))
    assert store.saves == 0
    assert store.rows[1]["*City"] == "Elsewhere"


def test_persistent_conflicts_surface_as_write_failure(store) -> None:
    store.concurrent_writes.extend([lambda rows: None] * 3)

    with pytest.raises(UpstreamWriteError):
        asyncio.run(make_service(store, commit_max_attempts=3).update_address(TOKEN, ADDRESS))

    assert store.loads == 3
    assert store.saves == 0


def test_write_failure_is_not_reported_as_success(store) -> None:
    store.fail_writes = True

    with pytest.raises(UpstreamWriteError):
        asyncio.run(make_service(store).update_address(TOKEN, ADDRESS))

    assert len(store.rows) == 2
