"""Tabular store adapter — the gift list as a table of normalized rows.

A store pairs a *source* (where the bytes live) with a *codec* (how the bytes
become rows):

  sources  — ``GraphShareSource`` (a OneDrive/SharePoint share link) and
             ``LocalFileSource`` (a file on disk, for local runs)
  codecs   — ``WorkbookCodec`` (.xlsx, first worksheet, header in row 1) and
             ``SnapshotCodec`` (JSON array with ``token`` / ``expire`` keys)

Every load carries a version marker that the following save hands back, so a
concurrent change to the file surfaces as ``VersionConflictError`` instead of
being overwritten.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import tempfile
import zipfile
from abc import ABC, abstractmethod
from io import BytesIO
from pathlib import Path
from typing import Any

from openpyxl import Workbook, load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from app.core.config import Settings
from app.core.exceptions import (
    UpstreamReadError,
    UpstreamWriteError,
    VersionConflictError,
)
from app.domain.record import HEADERS, TOKEN_EXPIRES, TOKEN_LINK, RecordTable
from app.services.graph_client import Blob, GraphClient
from app.services.headers import normalize_row, present_labels, storage_to_public
from app.services.tokens import extract_token

logger = logging.getLogger(__name__)

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
JSON_CONTENT_TYPE = "application/json"


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

class BlobSource(ABC):
    """Where the gift list file lives."""

    @abstractmethod
    async def read(self) -> Blob:
        """Return the file content and its version marker."""

    @abstractmethod
    async def write(self, content: bytes, content_type: str, version: str | None) -> None:
        """Replace the file, failing with ``VersionConflictError`` if *version* is stale."""


class GraphShareSource(BlobSource):
    def __init__(self, client: GraphClient, share_link: str | None):
        self._client = client
        self._share_link = share_link

    def _link(self, error: type[UpstreamReadError] | type[UpstreamWriteError]) -> str:
        if not self._share_link:
            logger.error("SHARE_LINK is not configured")
            raise error()
        return self._share_link

    async def read(self) -> Blob:
        return await self._client.download(self._link(UpstreamReadError))

    async def write(self, content: bytes, content_type: str, version: str | None) -> None:
        await self._client.upload(
            self._link(UpstreamWriteError), content, content_type, etag=version,
        )


def _digest(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


class LocalFileSource(BlobSource):
    """A file on local disk; the version marker is the sha256 of its content."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    async def read(self) -> Blob:
        try:
            content = await asyncio.to_thread(self.path.read_bytes)
        except OSError as exc:
            logger.error("Failed to read %s: %s", self.path, exc)
            raise UpstreamReadError() from exc
        return Blob(content=content, etag=_digest(content))

    def _replace(self, content: bytes, version: str | None) -> None:
        if version is not None and self.path.exists():
            if _digest(self.path.read_bytes()) != version:
                raise VersionConflictError()
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(content)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def write(self, content: bytes, content_type: str, version: str | None) -> None:
        try:
            await asyncio.to_thread(self._replace, content, version)
        except VersionConflictError:
            logger.warning("%s changed since it was read", self.path)
            raise
        except OSError as exc:
            logger.error("Failed to write %s: %s", self.path, exc)
            raise UpstreamWriteError() from exc


# ---------------------------------------------------------------------------
# Codecs
# ---------------------------------------------------------------------------

class TableCodec(ABC):
    content_type: str

    @abstractmethod
    def decode(self, content: bytes) -> RecordTable:
        ...

    @abstractmethod
    def encode(self, table: RecordTable) -> bytes:
        ...


def _cell_value(cell: Any) -> Any:
    if cell.value is None:
        hyperlink = getattr(cell, "hyperlink", None)
        return hyperlink.target if hyperlink is not None else None
    return cell.value


class WorkbookCodec(TableCodec):
    content_type = XLSX_CONTENT_TYPE

    def decode(self, content: bytes) -> RecordTable:
        try:
            workbook = load_workbook(BytesIO(content), data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, KeyError, ValueError) as exc:
            logger.error("Gift list is not a readable workbook: %s", exc)
            raise UpstreamReadError() from exc

        if not workbook.worksheets:
            return RecordTable(rows=[], present_labels=frozenset())

        worksheet = workbook.worksheets[0]
        row_iter = worksheet.iter_rows()
        headers = [
            str(cell.value).strip() if cell.value is not None else ""
            for cell in next(row_iter, ())
        ]

        rows = []
        for cells in row_iter:
            values = [_cell_value(cell) for cell in cells]
            if all(value is None or value == "" for value in values):
                continue
            raw = {header: value for header, value in zip(headers, values) if header}
            rows.append(normalize_row(raw))

        return RecordTable(
            rows=rows,
            sheet_name=worksheet.title or "Sheet1",
            present_labels=present_labels(h for h in headers if h),
        )

    def encode(self, table: RecordTable) -> bytes:
        workbook = Workbook()
        worksheet = workbook.active
        worksheet.title = table.sheet_name or "Sheet1"
        worksheet.append(HEADERS)
        for row in table.rows:
            worksheet.append([row.get(header) or None for header in HEADERS])
        buffer = BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()


def _expire_value(expire: str) -> int | str | None:
    if not expire:
        return None
    try:
        return int(float(expire))
    except (ValueError, OverflowError):
        return expire


class SnapshotCodec(TableCodec):
    """JSON array of records keyed by public field names, plus ``token`` and ``expire``."""

    content_type = JSON_CONTENT_TYPE

    def decode(self, content: bytes) -> RecordTable:
        try:
            data = json.loads(content.decode("utf-8-sig"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.error("Gift list snapshot is not valid JSON: %s", exc)
            raise UpstreamReadError() from exc

        if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
            logger.error("Gift list snapshot must be a JSON array of objects")
            raise UpstreamReadError()

        keys = {key for item in data for key in item}
        return RecordTable(
            rows=[normalize_row(item) for item in data],
            present_labels=present_labels(keys),
        )

    def encode(self, table: RecordTable) -> bytes:
        records = []
        for row in table.rows:
            record: dict[str, Any] = storage_to_public(row)
            link = record.pop(TOKEN_LINK)
            expire = record.pop(TOKEN_EXPIRES)
            record["token"] = extract_token(link) if link else ""
            record["expire"] = _expire_value(expire)
            records.append(record)
        return json.dumps(records, indent=2, ensure_ascii=False).encode("utf-8")


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class TableStore:
    """Loads and saves a :class:`RecordTable` through a source and a codec."""

    def __init__(self, source: BlobSource, codec: TableCodec):
        self.source = source
        self.codec = codec

    async def load(self) -> RecordTable:
        blob = await self.source.read()
        table = self.codec.decode(blob.content)
        table.version = blob.etag
        logger.debug("Loaded %d rows (version=%s)", len(table.rows), table.version)
        return table

    async def save(self, table: RecordTable) -> None:
        content = self.codec.encode(table)
        await self.source.write(content, self.codec.content_type, table.version)
        logger.debug("Saved %d rows", len(table.rows))


_CODECS: dict[str, type[TableCodec]] = {
    "workbook": WorkbookCodec,
    "snapshot": SnapshotCodec,
}


def build_store(settings: Settings) -> TableStore:
    """Build the store described by *settings* (format + local path or share link)."""
    try:
        codec = _CODECS[settings.store_format]()
    except KeyError:
        raise ValueError(
            f"Unsupported STORE_FORMAT '{settings.store_format}'. "
            f"Expected one of: {', '.join(sorted(_CODECS))}"
        ) from None

    source: BlobSource
    if settings.local_store_path:
        source = LocalFileSource(settings.local_store_path)
    else:
        source = GraphShareSource(
            GraphClient(
                tenant_id=settings.tenant_id,
                client_id=settings.graph_client_id,
                client_secret=settings.graph_client_secret,
                base_url=settings.graph_base_url,
                login_url=settings.graph_login_url,
                scope=settings.graph_scope,
                timeout=settings.upstream_timeout,
                max_retries=settings.upstream_max_retries,
                retry_backoff=settings.upstream_retry_backoff,
            ),
            settings.share_link,
        )
    logger.info("Gift list store: format=%s source=%s", settings.store_format, type(source).__name__)
    return TableStore(source, codec)
