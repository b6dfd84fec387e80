"""Token registry — issuing bearer tokens and resolving them to gift list rows.

A token is 128 random bits rendered as 32 hex characters. It is stored on the
row as its canonical link ``<base-url>?token=<id>`` together with an absolute
expiry in epoch milliseconds.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from urllib.parse import parse_qs, urlsplit

from app.core.exceptions import InvalidTokenError, TokenExpiredError
from app.domain.record import (
    FIELDS_BY_NAME,
    TOKEN_EXPIRES,
    TOKEN_LINK,
    Identity,
    RecordTable,
    Row,
    identity_of,
)

logger = logging.getLogger(__name__)

TOKEN_BYTES = 16
DEFAULT_TTL_MS = 7 * 24 * 60 * 60 * 1000

_LINK_LABEL = FIELDS_BY_NAME[TOKEN_LINK].label
_EXPIRES_LABEL = FIELDS_BY_NAME[TOKEN_EXPIRES].label


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expire_ms: int


@dataclass(frozen=True)
class Resolution:
    """Where a token points in a table.

    ``read_index`` is the most recent row carrying the token; ``original_index``
    is the first row sharing its identity, which is the one edited in place.
    """

    identity: Identity
    read_index: int
    original_index: int | None


def epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def build_token_link(token: str, base_url: str) -> str:
    return f"{base_url}?token={token}"


def issue_token(now: datetime | None = None, ttl_ms: int = DEFAULT_TTL_MS) -> IssuedToken:
    moment = now or datetime.now(timezone.utc)
    return IssuedToken(
        token=secrets.token_hex(TOKEN_BYTES),
        expire_ms=epoch_ms(moment) + ttl_ms,
    )


def issue_tokens(
    rows: Iterable[Row],
    base_url: str,
    now: datetime | None = None,
    ttl_ms: int = DEFAULT_TTL_MS,
) -> list[Row]:
    """Return copies of *rows* each carrying a fresh token link and expiry."""
    issued: list[Row] = []
    for row in rows:
        token = issue_token(now, ttl_ms)
        issued.append({
            **row,
            _LINK_LABEL: build_token_link(token.token, base_url),
            _EXPIRES_LABEL: str(token.expire_ms),
        })
    logger.info("Issued %d tokens", len(issued))
    return issued


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------

def _legacy_suffix_match(stored: str, token: str) -> bool:
    """Share links pasted by hand before canonical links were written back."""
    return stored.endswith(f"?token={token}")


def token_matches(stored: str, token: str, base_url: str) -> bool:
    if not stored or not token:
        return False
    if stored == token or stored == build_token_link(token, base_url):
        return True
    return _legacy_suffix_match(stored, token)


def extract_token(stored: str) -> str:
    """Recover the bare token id from a stored bare id or link."""
    if "?" not in stored:
        return stored
    values = parse_qs(urlsplit(stored).query).get("token")
    return values[-1] if values else stored


def is_expired(expire: str, now_ms: int) -> bool:
    """Empty expiry never expires; an unreadable one fails closed."""
    if not expire:
        return False
    try:
        expire_ms = int(float(expire))
    except (ValueError, OverflowError):
        logger.warning("Unreadable token expiry %r; treating as expired", expire)
        return True
    return now_ms >= expire_ms


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def resolve(table: RecordTable, token: str, now_ms: int, base_url: str) -> Resolution:
    """Locate *token* in *table*.

    Raises ``InvalidTokenError`` when no row carries it and
    ``TokenExpiredError`` when the row it resolves to has expired.
    """
    matches = [
        i for i, row in enumerate(table.rows)
        if token_matches(row.get(_LINK_LABEL, ""), token, base_url)
    ]
    if not matches:
        raise InvalidTokenError()

    read_index = matches[-1]
    row = table.rows[read_index]
    if is_expired(row.get(_EXPIRES_LABEL, ""), now_ms):
        raise TokenExpiredError()

    identity = identity_of(row)
    return Resolution(
        identity=identity,
        read_index=read_index,
        original_index=table.original_index(identity),
    )
