"""Microsoft Graph client for files reachable through a OneDrive/SharePoint share link.

Provides:
1. **Client-credentials auth** — an app-only access token, cached until shortly
   before it expires instead of being fetched on every request.
2. **Share-link file access** — download a file with its ``eTag`` and upload
   a replacement guarded by ``If-Match``.

Transient failures (transport errors, 429, 5xx) are retried with exponential
backoff. A 401 drops the cached token and retries once.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from dataclasses import dataclass

import httpx

from app.core.exceptions import (
    AuthError,
    UpstreamReadError,
    UpstreamWriteError,
    VersionConflictError,
)

logger = logging.getLogger(__name__)

_RETRY_STATUSES = {429, 500, 502, 503, 504}
_TOKEN_EXPIRY_SKEW_S = 60


@dataclass(frozen=True)
class Blob:
    content: bytes
    etag: str | None = None


class _UpstreamFailure(Exception):
    """Non-retryable (or retries exhausted) failure talking to Graph."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


def encode_share_link(link: str) -> str:
    """Encode a sharing URL as a Graph ``shareId`` (``u!`` + unpadded base64url)."""
    encoded = base64.urlsafe_b64encode(link.encode("utf-8")).decode("ascii")
    return "u!" + encoded.rstrip("=")


class GraphClient:
    """Thin async wrapper around the Graph ``/shares`` API."""

    def __init__(
        self,
        *,
        tenant_id: str | None,
        client_id: str | None,
        client_secret: str | None,
        base_url: str = "https://graph.microsoft.com/v1.0",
        login_url: str = "https://login.microsoftonline.com",
        scope: str = "https://graph.microsoft.com/.default",
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_backoff: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = base_url.rstrip("/")
        self.login_url = login_url.rstrip("/")
        self.scope = scope
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._transport = transport

        self._access_token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            transport=self._transport,
        )

    # ── Auth ──────────────────────────────────────────────────────────────

    async def get_access_token(self) -> str:
        """Return a cached app-only token, requesting a new one when close to expiry."""
        async with self._token_lock:
            if self._access_token and time.monotonic() < self._token_expires_at:
                return self._access_token

            if not (self.tenant_id and self.client_id and self.client_secret):
                logger.error("Graph credentials are not configured")
                raise AuthError("Missing Graph credentials")

            url = f"{self.login_url}/{self.tenant_id}/oauth2/v2.0/token"
            data = {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "scope": self.scope,
                "grant_type": "client_credentials",
            }
            try:
                async with self._client() as client:
                    response = await client.post(url, data=data)
            except httpx.HTTPError as exc:
                logger.error("Token request failed: %s", exc)
                raise AuthError() from exc

            if response.status_code != 200:
                logger.error("Token request failed: %s %s", response.status_code, response.text)
                raise AuthError()

            try:
                payload = response.json()
                access_token = payload["access_token"]
                expires_in = int(payload.get("expires_in", 3600))
            except (KeyError, TypeError, ValueError) as exc:
                logger.error("Malformed token response: %s", response.text)
                raise AuthError() from exc

            self._access_token = access_token
            self._token_expires_at = time.monotonic() + max(0, expires_in - _TOKEN_EXPIRY_SKEW_S)
            logger.info("Acquired Graph access token (expires_in=%ds)", expires_in)
            return self._access_token

    def invalidate_token(self) -> None:
        self._access_token = None
        self._token_expires_at = 0.0

    # ── Core request with retry ───────────────────────────────────────────

    async def _request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        content: bytes | None = None,
    ) -> httpx.Response:
        """Send an authenticated request, retrying transient failures."""
        reauthenticated = False
        attempt = 0
        while True:
            token = await self.get_access_token()
            request_headers = {"Authorization": f"Bearer {token}", **(headers or {})}
            try:
                async with self._client() as client:
                    response = await client.request(
                        method, url, headers=request_headers, content=content,
                    )
            except httpx.TransportError as exc:
                if attempt >= self.max_retries:
                    raise _UpstreamFailure(f"{method} {url} failed: {exc}") from exc
                logger.warning("Graph %s transport error (attempt %d): %s", method, attempt + 1, exc)
            else:
                if response.status_code == 401 and not reauthenticated:
                    logger.info("Graph returned 401; refreshing access token")
                    self.invalidate_token()
                    reauthenticated = True
                    continue
                if response.status_code not in _RETRY_STATUSES or attempt >= self.max_retries:
                    return response
                logger.warning(
                    "Graph %s returned %d (attempt %d)", method, response.status_code, attempt + 1,
                )

            await asyncio.sleep(self.retry_backoff * (2 ** attempt))
            attempt += 1

    def _item_url(self, share_link: str) -> str:
        return f"{self.base_url}/shares/{encode_share_link(share_link)}/driveItem"

    # ── Public methods ────────────────────────────────────────────────────

    async def download(self, share_link: str) -> Blob:
        """Download the shared file together with its current ``eTag``."""
        item_url = self._item_url(share_link)
        try:
            meta = await self._request("GET", item_url)
            if meta.status_code != 200:
                raise _UpstreamFailure(f"metadata: {meta.text}", meta.status_code)
            response = await self._request("GET", f"{item_url}/content")
            if response.status_code != 200:
                raise _UpstreamFailure(f"content: {response.text}", response.status_code)
        except _UpstreamFailure as exc:
            logger.error("Failed to download shared file: %s", exc)
            raise UpstreamReadError() from exc

        try:
            etag = meta.json().get("eTag")
        except (AttributeError, ValueError) as exc:
            logger.error("Malformed driveItem metadata: %s", meta.text)
            raise UpstreamReadError() from exc
        return Blob(content=response.content, etag=etag)

    async def upload(
        self,
        share_link: str,
        content: bytes,
        content_type: str,
        etag: str | None = None,
    ) -> str | None:
        """Replace the shared file. Returns the new ``eTag`` when Graph reports one.

        Raises ``VersionConflictError`` when *etag* no longer matches.
        """
        headers = {"Content-Type": content_type}
        if etag:
            headers["If-Match"] = etag
        try:
            response = await self._request(
                "PUT", f"{self._item_url(share_link)}/content",
                headers=headers, content=content,
            )
        except _UpstreamFailure as exc:
            logger.error("Failed to upload shared file: %s", exc)
            raise UpstreamWriteError() from exc

        if response.status_code == 412:
            logger.warning("Shared file changed since it was read (eTag %s)", etag)
            raise VersionConflictError()
        if response.status_code not in (200, 201):
            logger.error(
                "Failed to upload shared file: %s %s", response.status_code, response.text,
            )
            raise UpstreamWriteError()
        if not response.content:
            return None
        # The write has landed; an unreadable reply only loses the new eTag.
        try:
            return response.json().get("eTag")
        except (AttributeError, ValueError):
            logger.warning("Upload succeeded but the reply was not readable: %s", response.text)
            return None
