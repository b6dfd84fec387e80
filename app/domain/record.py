"""Gift list field schema and the in-memory table of backer records.

Rows are plain ``dict[str, str]`` keyed by storage column label. A record's
identity is its (Order Number, Backer No.) pair; the store does not enforce
uniqueness, so the original row and every audit row share one identity and
row order decides which one is which.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class FieldSpec:
    """One canonical field: public name, storage label and accepted legacy labels."""

    name: str
    label: str
    aliases: tuple[str, ...] = ()
    editable: bool = False

    @property
    def read_labels(self) -> tuple[str, ...]:
        """Labels tried on read, in priority order."""
        labels = [self.label]
        if self.name != self.label:
            labels.append(self.name)
        labels.extend(a for a in self.aliases if a not in labels)
        return tuple(labels)


ORDER_NUMBER = "Order Number"
BACKER_NO = "Backer No."
MATCH_STATUS = "Match Status"
CHANGED_FIELDS = "Changed Fields"
CHANGED_VALUES = "Changed Values"
SUBMITTED_AT = "Submitted At"
TOKEN_LINK = "Token Link"
TOKEN_EXPIRES = "Token Expires"

# Order matters: it is the header order written back to storage.
FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec(ORDER_NUMBER, "*Order Number"),
    FieldSpec(BACKER_NO, "Backer No.", aliases=("Double Check No",)),
    FieldSpec("Reward Name", "*Reward Name"),
    FieldSpec("Item Quantity", "*Item Quantity"),
    FieldSpec("Full Name", "*Full Name", editable=True),
    FieldSpec("Phone Number", "Phone Number", editable=True),
    FieldSpec("Country/Region Code", "*Country/Region Code", editable=True),
    FieldSpec("State/Province/Region", "State/Province/Region", editable=True),
    FieldSpec("City", "*City", editable=True),
    FieldSpec("Address1", "*Address1", editable=True),
    FieldSpec("Address2", "Address2", editable=True),
    FieldSpec("Zip Code", "Zip Code", editable=True),
    FieldSpec("Email", "Email", editable=True),
    FieldSpec("Total Payment", "Total Payment"),
    FieldSpec(MATCH_STATUS, "Match Status"),
    FieldSpec(CHANGED_FIELDS, "Changed Fields"),
    FieldSpec(CHANGED_VALUES, "Changed Values"),
    FieldSpec(SUBMITTED_AT, "Submitted At"),
    FieldSpec(TOKEN_LINK, "Token Link", aliases=("token",)),
    FieldSpec(TOKEN_EXPIRES, "Token Expires", aliases=("expire",)),
)

FIELDS_BY_NAME: dict[str, FieldSpec] = {f.name: f for f in FIELDS}
FIELDS_BY_LABEL: dict[str, FieldSpec] = {f.label: f for f in FIELDS}
HEADERS: list[str] = [f.label for f in FIELDS]

Row = dict[str, str]
Identity = tuple[str, str]


def identity_of(row: Row) -> Identity:
    return (
        row.get(FIELDS_BY_NAME[ORDER_NUMBER].label, ""),
        row.get(FIELDS_BY_NAME[BACKER_NO].label, ""),
    )


@dataclass
class RecordTable:
    """Normalized rows of one sheet plus what is needed to write them back."""

    rows: list[Row] = field(default_factory=list)
    sheet_name: str = "Sheet1"
    present_labels: frozenset[str] = field(default_factory=lambda: frozenset(HEADERS))
    version: str | None = None

    def indexes_for(self, identity: Identity) -> list[int]:
        return [i for i, row in enumerate(self.rows) if identity_of(row) == identity]

    def original_index(self, identity: Identity) -> int | None:
        """Index of the first row with *identity*; writes and inserts anchor here."""
        indexes = self.indexes_for(identity)
        return indexes[0] if indexes else None

    def most_recent_index(self, identity: Identity) -> int | None:
        """Index of the last row with *identity*; reads are served from here."""
        indexes = self.indexes_for(identity)
        return indexes[-1] if indexes else None

    def submission_count(self, identity: Identity) -> int:
        """Audit rows already recorded for *identity* (all rows but the original)."""
        return max(0, len(self.indexes_for(identity)) - 1)

    def insert_after(self, index: int, row: Row) -> None:
        self.rows.insert(index + 1, row)

    def append(self, row: Row) -> None:
        self.rows.append(row)
