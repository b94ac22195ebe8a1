"""
Unit tests for the keyed-hash token codec.

These tests are CI-safe (no I/O) and cover:
* Canonical millisecond ISO-8601 rendering and parsing
* KeyedHash against an HMAC-SHA256 reference
* Registration token shape
"""

from __future__ import annotations

import base64
import hmac
import re
from datetime import datetime, timedelta, timezone
from hashlib import sha256

import pytest

from fleet_dashboard.credentials.codec import (
    access_token_value,
    canonical_timestamp,
    challenge_digest,
    digests_match,
    from_millis,
    generate_registration_token,
    keyed_hash,
    parse_timestamp,
    to_millis,
)

NEW_YEAR_MS = 1_704_067_200_000  # 2024-01-01T00:00:00Z
LETTERS_RE = re.compile(r"^[A-Za-z]+$")


def _reference(secret: str, message: str) -> str:
    digest = hmac.new(secret.encode(), message.encode(), sha256).digest()
    return base64.b64encode(digest).decode("ascii")


# --------------------------------------------------------------------------- #
# Timestamps                                                                  #
# --------------------------------------------------------------------------- #
def test_canonical_timestamp_has_millisecond_precision() -> None:
    moment = datetime(2024, 1, 1, 0, 0, 0, tzinfo=timezone.utc)
    assert canonical_timestamp(moment) == "2024-01-01T00:00:00.000Z"


def test_canonical_timestamp_truncates_microseconds() -> None:
    moment = datetime(2024, 3, 5, 7, 8, 9, 123_999, tzinfo=timezone.utc)
    assert canonical_timestamp(moment) == "2024-03-05T07:08:09.123Z"


def test_canonical_timestamp_converts_offsets_to_utc() -> None:
    moment = datetime(2024, 1, 1, 6, 0, tzinfo=timezone(timedelta(hours=6)))
    assert canonical_timestamp(moment) == "2024-01-01T00:00:00.000Z"


def test_canonical_timestamp_accepts_epoch_millis() -> None:
    assert canonical_timestamp(NEW_YEAR_MS + 42) == "2024-01-01T00:00:00.042Z"


@pytest.mark.parametrize(
    "raw",
    ["0999-01-01T00:00:00.000Z", "0042-06-15T12:30:45.678Z", "0001-01-01T00:00:00.000Z"],
)
def test_canonical_timestamp_pads_early_years(raw: str) -> None:
    assert canonical_timestamp(parse_timestamp(raw)) == raw


def test_challenge_digest_for_early_year() -> None:
    moment = parse_timestamp("0999-01-01T00:00:00.000Z")
    assert challenge_digest("s3cret", "a@b.com", moment) == _reference(
        "s3cret", "a@b.com0999-01-01T00:00:00.000Z"
    )


def test_millis_helpers_are_inverse() -> None:
    assert to_millis(from_millis(NEW_YEAR_MS + 999)) == NEW_YEAR_MS + 999
    assert to_millis(datetime(2024, 1, 1)) == NEW_YEAR_MS  # naive taken as UTC


@pytest.mark.parametrize(
    "raw",
    [
        "2024-01-01T00:00:00.000Z",
        "2024-01-01T00:00:00Z",
        "2024-01-01T00:00:00.000+00:00",
        "2024-01-01T01:00:00.000+01:00",
        "2024-01-01T00:00:00",
        NEW_YEAR_MS,
        datetime(2024, 1, 1, tzinfo=timezone.utc),
    ],
)
def test_parse_timestamp_accepts_equivalent_forms(raw: object) -> None:
    assert canonical_timestamp(parse_timestamp(raw)) == "2024-01-01T00:00:00.000Z"


@pytest.mark.parametrize("raw", ["", "   ", "not-a-date", "2024-13-01T00:00:00Z", None, True, 3.5, {}])
def test_parse_timestamp_rejects_garbage(raw: object) -> None:
    with pytest.raises(ValueError):
        parse_timestamp(raw)


# --------------------------------------------------------------------------- #
# KeyedHash                                                                   #
# --------------------------------------------------------------------------- #
def test_keyed_hash_matches_hmac_reference() -> None:
    assert keyed_hash("s3cret", "payload") == _reference("s3cret", "payload")


def test_keyed_hash_depends_on_secret() -> None:
    assert keyed_hash("one", "payload") != keyed_hash("two", "payload")


def test_challenge_digest_concrete_message() -> None:
    moment = parse_timestamp("2024-01-01T00:00:00.000Z")
    assert challenge_digest("s3cret", "a@b.com", moment) == _reference(
        "s3cret", "a@b.com2024-01-01T00:00:00.000Z"
    )


def test_access_token_value_covers_created_at_and_ttl() -> None:
    token = access_token_value("s3cret", "a@b.com", NEW_YEAR_MS, 3_600_000)
    assert token == _reference("s3cret", "a@b.com2024-01-01T00:00:00.000Z3600000")
    assert token != access_token_value("s3cret", "a@b.com", NEW_YEAR_MS, 60_000)
    assert token != access_token_value("s3cret", "a@b.com", NEW_YEAR_MS + 1, 3_600_000)


def test_digests_match_is_exact() -> None:
    assert digests_match("abc=", "abc=") is True
    assert digests_match("abc=", "abd=") is False
    assert digests_match("abc", "abc=") is False


# --------------------------------------------------------------------------- #
# Registration tokens                                                         #
# --------------------------------------------------------------------------- #
def test_registration_token_shape() -> None:
    token = generate_registration_token()
    assert len(token) == 16
    assert LETTERS_RE.match(token)


def test_registration_tokens_are_not_repeated() -> None:
    tokens = {generate_registration_token() for _ in range(50)}
    assert len(tokens) == 50


def test_registration_token_invalid_length() -> None:
    with pytest.raises(ValueError):
        generate_registration_token(0)
