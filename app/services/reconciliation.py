"""Reconciliation engine — diff a backer's submission against the stored record.

Pure in-memory logic over a :class:`~app.domain.record.RecordTable`. Loading
and persisting the table is the caller's job (see
:mod:`app.services.address`).

Responsibilities:
  - Token resolution and expiry (delegated to :mod:`app.services.tokens`)
  - Submission cap per record identity
  - Field-level diff restricted to the editable allowlist
  - Applying edits to the original row and inserting the audit row below it
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from app.core.exceptions import SubmissionLimitError
from app.domain.record import (
    BACKER_NO,
    CHANGED_FIELDS,
    CHANGED_VALUES,
    FIELDS_BY_NAME,
    MATCH_STATUS,
    ORDER_NUMBER,
    SUBMITTED_AT,
    TOKEN_LINK,
    RecordTable,
    Row,
)
from app.services.headers import (
    cell_text,
    label_for,
    normalize_row,
    public_to_storage,
    storage_to_public,
)
from app.services.tokens import build_token_link, epoch_ms, resolve

logger = logging.getLogger(__name__)

MATCH = "MATCH"
MISMATCH = "MISMATCH"


@dataclass(frozen=True)
class Comparison:
    match_status: str
    changed_fields: list[str]
    changed_values: list[str]


@dataclass(frozen=True)
class AuditEntry:
    """Everything recorded about one submission."""

    identifiers: dict[str, str]
    comparison: Comparison
    original: dict[str, str]
    submitted: dict[str, str]
    submitted_at: str
    token_link: str

    def to_row(self) -> Row:
        """Materialize as a storage row: original values overlaid with the submission."""
        record = {
            **self.original,
            **self.submitted,
            MATCH_STATUS: self.comparison.match_status,
            CHANGED_FIELDS: ",".join(self.comparison.changed_fields),
            CHANGED_VALUES: " | ".join(self.comparison.changed_values),
            SUBMITTED_AT: self.submitted_at,
            TOKEN_LINK: self.token_link,
        }
        return normalize_row(public_to_storage(record))


def allowed_fields(table: RecordTable, editable_fields: Iterable[str]) -> list[str]:
    """Editable fields that exist in the table's schema, in allowlist order."""
    return [
        name for name in editable_fields
        if name in FIELDS_BY_NAME and FIELDS_BY_NAME[name].label in table.present_labels
    ]


def compare(
    original: Mapping[str, str],
    submitted: Mapping[str, str],
    fields: Iterable[str],
) -> Comparison:
    """Textual field-by-field comparison; no coercion beyond stringification."""
    changed_fields: list[str] = []
    changed_values: list[str] = []
    for name in fields:
        old = cell_text(original.get(name))
        new = cell_text(submitted.get(name))
        if old != new:
            changed_fields.append(name)
            changed_values.append(f"{name}: {old} -> {new}")
    return Comparison(
        match_status=MISMATCH if changed_fields else MATCH,
        changed_fields=changed_fields,
        changed_values=changed_values,
    )


def reconcile_table(
    table: RecordTable,
    token: str,
    address: Mapping[str, Any],
    *,
    now: datetime,
    base_url: str,
    max_submissions: int,
    editable_fields: Iterable[str],
) -> AuditEntry:
    """Apply one submission to *table* in place and return its audit entry.

    Raises ``InvalidTokenError``, ``TokenExpiredError`` or
    ``SubmissionLimitError`` before touching the table.
    """
    resolution = resolve(table, token, epoch_ms(now), base_url)

    submission_count = table.submission_count(resolution.identity)
    if submission_count >= max_submissions:
        logger.info(
            "Submission cap reached for order=%s (%d/%d)",
            resolution.identity[0], submission_count, max_submissions,
        )
        raise SubmissionLimitError(max_submissions)

    anchor_index = resolution.original_index
    original_row = table.rows[
        resolution.read_index if anchor_index is None else anchor_index
    ]

    fields = allowed_fields(table, editable_fields)
    original = storage_to_public(original_row)
    submitted = {name: cell_text(address.get(name)) for name in fields}
    comparison = compare(original, submitted, fields)
    # Only keys the backer actually sent are written; omitted fields keep their stored value.
    applied = {name: value for name, value in submitted.items() if name in address}
    token_link = build_token_link(token, base_url)

    entry = AuditEntry(
        identifiers={
            ORDER_NUMBER: original[ORDER_NUMBER],
            BACKER_NO: original[BACKER_NO],
            "Email": original.get("Email", ""),
        },
        comparison=comparison,
        original=original,
        submitted=applied,
        submitted_at=now.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        token_link=token_link,
    )

    for name, value in applied.items():
        original_row[label_for(name)] = value
    original_row[label_for(TOKEN_LINK)] = token_link

    audit_row = entry.to_row()
    if anchor_index is None:
        table.append(audit_row)
    else:
        table.insert_after(anchor_index, audit_row)

    logger.info(
        "Reconciled order=%s status=%s changed=%s",
        resolution.identity[0], comparison.match_status, comparison.changed_fields,
    )
    return entry
