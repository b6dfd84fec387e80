"""Address service — token-scoped read path and reconcile-and-persist write path.

How a submission is committed:
  1. Take the process-wide commit lock (the whole table is rewritten on every
     save, so two writers for different records still race)
  2. Load the table together with its version marker
  3. Run the reconciliation engine against it
  4. Save with the version read; on ``VersionConflictError`` start over from 2
     so the submission cap is checked against the fresh table

Rule: No FastAPI here. Raise AppException subclasses for every failure.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

from app.core.config import Settings, settings
from app.core.exceptions import UpstreamWriteError, ValidationError, VersionConflictError
from app.services.headers import storage_to_public
from app.services.reconciliation import Comparison, reconcile_table
from app.services.table_store import TableStore, build_store
from app.services.tokens import epoch_ms, resolve

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AddressService:
    def __init__(
        self,
        store: TableStore,
        *,
        token_base_url: str,
        max_submissions: int = 3,
        editable_fields: list[str],
        commit_max_attempts: int = 3,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._store = store
        self.token_base_url = token_base_url
        self.max_submissions = max_submissions
        self.editable_fields = list(editable_fields)
        self.commit_max_attempts = max(1, commit_max_attempts)
        self._clock = clock
        self._commit_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, config: Settings) -> AddressService:
        return cls(
            build_store(config),
            token_base_url=config.token_base_url,
            max_submissions=config.max_submissions,
            editable_fields=config.editable_fields,
            commit_max_attempts=config.commit_max_attempts,
        )

    async def fetch_record(self, token: str) -> dict[str, str]:
        """Return the most recent row for *token*, keyed by public field names."""
        if not token:
            raise ValidationError("Missing token")
        table = await self._store.load()
        resolution = resolve(table, token, epoch_ms(self._clock()), self.token_base_url)
        return storage_to_public(table.rows[resolution.read_index])

    async def update_address(self, token: str, address: Mapping[str, Any] | None) -> Comparison:
        """Reconcile a submitted address and persist it. Returns the comparison."""
        if not token or not isinstance(address, Mapping):
            raise ValidationError("Missing token or address")

        async with self._commit_lock:
            for attempt in range(1, self.commit_max_attempts + 1):
                table = await self._store.load()
                entry = reconcile_table(
                    table,
                    token,
                    address,
                    now=self._clock(),
                    base_url=self.token_base_url,
                    max_submissions=self.max_submissions,
                    editable_fields=self.editable_fields,
                )
                try:
                    await self._store.save(table)
                except VersionConflictError:
                    logger.warning(
                        "Gift list changed while saving (attempt %d/%d); retrying",
                        attempt, self.commit_max_attempts,
                    )
                    continue
                return entry.comparison

        logger.error("Gave up saving gift list after %d conflicting attempts", self.commit_max_attempts)
        raise UpstreamWriteError()


@lru_cache
def get_address_service() -> AddressService:
    """Factory for the process-wide AddressService (keeps the Graph token cache warm)."""
    return AddressService.from_settings(settings)
