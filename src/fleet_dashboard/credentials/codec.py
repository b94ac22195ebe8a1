"""Keyed-hash token codec.

Challenge digests and access-token values are both HMAC-SHA256 digests keyed
by the principal's shared secret:

1. challenge ``=`` ``HMAC(secret, identifier + <client timestamp>)``
2. access token ``=`` ``HMAC(secret, identifier + <created_at> + <ttl_millis>)``

Timestamps are rendered in one canonical ISO-8601 UTC form with millisecond
precision (``2024-01-01T00:00:00.000Z``) so a digest computed by a client is
reproduced bit-for-bit on the server.  Digests are standard (padded) base64.

Registration tokens are not derived from any secret: they are 16 ASCII letters
drawn from the ``secrets`` CSPRNG.

This module intentionally performs **no logging**.
"""

from __future__ import annotations

import base64
import hmac
import secrets
import string
from datetime import datetime, timedelta, timezone
from hashlib import sha256
from typing import Final

REGISTRATION_TOKEN_LENGTH: Final[int] = 16
_LETTERS: Final[str] = string.ascii_letters
_EPOCH: Final[datetime] = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_millis(moment: datetime) -> int:
    """Return *moment* as whole milliseconds since the epoch (naive = UTC)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    delta = moment - _EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def from_millis(millis: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=millis)


def canonical_timestamp(moment: datetime | int) -> str:
    """Render *moment* as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` in UTC.

    Integers are epoch milliseconds.  Sub-millisecond precision is truncated.
    """
    if isinstance(moment, int):
        moment = from_millis(moment)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    # strftime("%Y") does not zero-pad years before 1000 on every platform
    return f"{moment.year:04d}-{moment:%m-%dT%H:%M:%S}.{moment.microsecond // 1000:03d}Z"


def parse_timestamp(value: object) -> datetime:
    """Parse a client-supplied timestamp into an aware UTC ``datetime``.

    Accepts ISO-8601 strings (``Z`` or numeric offset, naive = UTC),
    ``datetime`` instances and integer epoch milliseconds.

    Raises
    ------
    ValueError
        If *value* is missing or cannot be interpreted as an instant.
    """
    if isinstance(value, bool) or value is None:
        raise ValueError("timestamp is missing")
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, int):
        try:
            moment = from_millis(value)
        except OverflowError as exc:
            raise ValueError("timestamp is out of range") from exc
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("timestamp is empty")
        if text[-1] in "zZ":
            text = text[:-1] + "+00:00"
        moment = datetime.fromisoformat(text)
    else:
        raise ValueError(f"unsupported timestamp type {type(value).__name__}")

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def keyed_hash(secret: str, message: str) -> str:
    """Return base64 HMAC-SHA256 of *message* keyed by *secret*."""
    digest = hmac.new(secret.encode("utf-8"), msg=message.encode("utf-8"), digestmod=sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def challenge_digest(secret: str, identifier: str, moment: datetime | int) -> str:
    """Digest a client must present to prove knowledge of *secret*."""
    return keyed_hash(secret, identifier + canonical_timestamp(moment))


def access_token_value(secret: str, identifier: str, created_at: int, ttl_millis: int) -> str:
    """Derive the access-token string for one issuance."""
    return keyed_hash(secret, identifier + canonical_timestamp(created_at) + str(ttl_millis))


def digests_match(presented: str, expected: str) -> bool:
    """Exact string equality, evaluated in constant time."""
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


def generate_registration_token(length: int = REGISTRATION_TOKEN_LENGTH) -> str:
    """Return *length* letters (``A-Z``/``a-z``) from a CSPRNG."""
    if length <= 0:
        raise ValueError("registration token length must be positive")
    return "".join(secrets.choice(_LETTERS) for _ in range(length))
