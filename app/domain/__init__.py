"""Domain package — ORM models (imported here so ``init_models`` registers them)
and the gift list record schema.

Folder intent:
  record.py  — Field schema, record identity and the in-memory RecordTable
  audit.py   — Immutable request audit trail (never updated or deleted)
"""

from app.domain.audit import AuditTrail
from app.domain.record import FIELDS, FieldSpec, RecordTable

__all__ = [
    "AuditTrail",
    "FIELDS",
    "FieldSpec",
    "RecordTable",
]
