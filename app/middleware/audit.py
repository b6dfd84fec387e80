"""Audit logging middleware — records every state-changing request to audit_trail."""


import asyncio
import logging
import time
from collections.abc import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import settings
from app.db import base as db
from app.domain.audit import AuditTrail

logger = logging.getLogger(__name__)

# Methods that mutate state
_WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

class AuditMiddleware(BaseHTTPMiddleware):
    """Logs all write operations.

    Each audit row is written asynchronously AFTER the response is sent so it
    never adds latency to the request. Failures in audit logging are caught and
    logged; they never raise to the caller.
    """

    def __init__(self, app, enabled: bool | None = None):
        super().__init__(app)
        self.enabled = settings.audit_enabled if enabled is None else enabled
        self._pending: set[asyncio.Task] = set()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000)

        if self.enabled and request.method in _WRITE_METHODS:
            # Fire-and-forget: don't await here so the response is not delayed
            task = asyncio.create_task(
                self.record(request, response.status_code, duration_ms)
            )
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        return response

    async def record(
        self, request: Request, status_code: int, duration_ms: int
    ) -> None:
        """Persist an audit row. Swallows all errors to avoid cascading failures."""
        try:
            # e.g. /api/updateAddress → "updateAddress"
            parts = [p for p in request.url.path.strip("/").split("/") if p]
            entity_type = parts[-1] if parts else "unknown"

            async with db.async_session_factory() as session:
                session.add(
                    AuditTrail(
                        ip_address=request.client.host if request.client else None,
                        user_agent=request.headers.get("user-agent"),
                        action=f"{request.method}:{status_code}",
                        entity_type=entity_type,
                        status_code=status_code,
                        duration_ms=duration_ms,
                        description=f"{request.method} {request.url.path} → {status_code} ({duration_ms}ms)",
                    )
                )
                await session.commit()
        except Exception:  # pragma: no cover
            logger.exception("Failed to record audit row for %s %s", request.method, request.url.path)
