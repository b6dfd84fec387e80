import copy
import os
from datetime import datetime, timedelta, timezone

# Keep the request audit trail out of unit tests; test_audit_middleware drives it directly.
os.environ.setdefault("AUDIT_ENABLED", "false")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest

from app.core.exceptions import UpstreamWriteError, VersionConflictError
from app.domain.record import HEADERS, RecordTable
from app.services.address import AddressService
from app.services.headers import normalize_row, public_to_storage
from app.services.tokens import build_token_link, epoch_ms

BASE_URL = "https://gift.example/"
NOW = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)
TOKEN = "a" * 32
OTHER_TOKEN = "b" * 32


def make_row(token: str | None = TOKEN, expire: datetime | None = None, **fields: str) -> dict[str, str]:
    """Storage row from public field names, with a canonical link and 7-day expiry."""
    record = {
        "Order Number": "A1",
        "Backer No.": "B1",
        "Full Name": "Jane",
        "City": "Reno",
        "Email": "j@x.com",
        **fields,
    }
    if token is not None:
        record["Token Link"] = build_token_link(token, BASE_URL)
        record["Token Expires"] = str(epoch_ms(expire or NOW + timedelta(days=7)))
    return normalize_row(public_to_storage(record))


def make_table(*rows: dict[str, str]) -> RecordTable:
    return RecordTable(rows=[dict(r) for r in rows], present_labels=frozenset(HEADERS))


class FakeStore:
    """In-memory TableStore stand-in with a version counter and injectable failures."""

    def __init__(self, rows, present_labels=frozenset(HEADERS)):
        self.rows = copy.deepcopy(list(rows))
        self.present_labels = present_labels
        self.version = 0
        self.loads = 0
        self.saves = 0
        self.fail_writes = False
        self.concurrent_writes: list = []

    async def load(self) -> RecordTable:
        self.loads += 1
        return RecordTable(
            rows=copy.deepcopy(self.rows),
            present_labels=self.present_labels,
            version=str(self.version),
        )

    async def save(self, table: RecordTable) -> None:
        if self.fail_writes:
            raise UpstreamWriteError()
        if self.concurrent_writes:
            # Another writer lands between our read and our write.
            self.concurrent_writes.pop(0)(self.rows)
            self.version += 1
        if table.version != str(self.version):
            raise VersionConflictError()
        self.rows = copy.deepcopy(table.rows)
        self.version += 1
        self.saves += 1


def make_service(store, **kwargs) -> AddressService:
    kwargs.setdefault("token_base_url", BASE_URL)
    kwargs.setdefault("editable_fields", [
        "Full Name", "Phone Number", "Country/Region Code", "State/Province/Region",
        "City", "Address1", "Address2", "Zip Code", "Email",
    ])
    kwargs.setdefault("clock", lambda: NOW)
    return AddressService(store, **kwargs)


@pytest.fixture
def store():
    return FakeStore([
        make_row(),
        make_row(token=OTHER_TOKEN, **{"Order Number": "A2", "Backer No.": "B2", "Full Name": "Ann"}),
    ])
