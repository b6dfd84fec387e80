"""Header normalization between storage column labels and public field names.

Spreadsheets in the wild carry older column labels ("Double Check No",
unstarred "City", ...). Every row entering the service is normalized to the
canonical labels in :data:`app.domain.record.FIELDS`; every row leaving it
is written with exactly those labels, in that order.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date, datetime
from typing import Any

from app.domain.record import FIELDS, FIELDS_BY_LABEL, FIELDS_BY_NAME, Row


def cell_text(value: Any) -> str:
    """Render a raw cell / JSON value as the string the service compares on."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        # openpyxl / JSON may hand back 1712345678901.0 for an integer cell
        return str(int(value))
    return str(value)


def normalize_row(raw: Mapping[str, Any]) -> Row:
    """Return *raw* keyed by canonical storage labels.

    For each field the exact label wins, then its aliases in priority order;
    missing fields become ``""``. Unknown columns are dropped.
    """
    normalized: Row = {}
    for spec in FIELDS:
        normalized[spec.label] = ""
        for label in spec.read_labels:
            if label in raw:
                normalized[spec.label] = cell_text(raw[label])
                break
    return normalized


def present_labels(keys: Iterable[str]) -> frozenset[str]:
    """Canonical labels provided (directly or through an alias) by *keys*."""
    available = set(keys)
    return frozenset(
        spec.label
        for spec in FIELDS
        if any(label in available for label in spec.read_labels)
    )


def label_for(name: str) -> str:
    return FIELDS_BY_NAME[name].label


def name_for(label: str) -> str:
    return FIELDS_BY_LABEL[label].name


def storage_to_public(row: Mapping[str, Any]) -> dict[str, str]:
    return {spec.name: cell_text(row.get(spec.label)) for spec in FIELDS}


def public_to_storage(record: Mapping[str, Any]) -> Row:
    return {
        spec.label: cell_text(record[spec.name])
        for spec in FIELDS
        if spec.name in record
    }
