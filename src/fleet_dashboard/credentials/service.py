"""CredentialLifecycleManager – challenge verification and access tokens.

One engine serves both principal kinds; a
:class:`~fleet_dashboard.credentials.models.KindPolicy` and the injected
stores are the only things that differ between the admin and user instances.

The manager exposes three public coroutines used by the HTTP layer:

``authenticate``
    Check a keyed-hash challenge and issue (or rotate) the access token.
``verify``
    The access guard run in front of every protected route.
``revoke``
    Explicitly drop the caller's access token.

Each returns a :class:`~fleet_dashboard.credentials.models.Result` instead of
raising, so handlers can render a stable response shape.  Internally the
``_``-prefixed helpers raise
:class:`~fleet_dashboard.credentials.errors.CredentialError` subclasses and
the public wrappers convert them.

Token records are never cached: every check re-reads the token store.
Concurrent ``authenticate`` calls for the same principal are last-writer-wins.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, TypeVar

from fleet_dashboard.credentials import codec
from fleet_dashboard.credentials.clock import Clock, default_clock, now_millis
from fleet_dashboard.credentials.errors import (
    CredentialError,
    InvalidChallenge,
    InvalidOrExpiredToken,
    StoreUnavailable,
    UnknownPrincipal,
    ValidationError,
)
from fleet_dashboard.credentials.log_utils import get_credentials_logger
from fleet_dashboard.credentials.models import (
    IssuedToken,
    KindPolicy,
    Principal,
    PrincipalKind,
    Result,
    TokenRecord,
    normalize_identifier,
)
from fleet_dashboard.credentials.store import PrincipalStore, TokenStore

_LOG = logging.getLogger("fleet-dashboard.credentials.service")

R = TypeVar("R")


async def guarded(awaitable: Awaitable[R], *, kind: PrincipalKind) -> R:
    """Await a store call, mapping any adapter failure to StoreUnavailable.

    ``CredentialError`` passes through unchanged; ``CancelledError`` is a
    ``BaseException`` and is never caught here.
    """
    try:
        return await awaitable
    except CredentialError:
        raise
    except Exception as exc:
        raise StoreUnavailable(
            f"{kind.value} credential store failed: {type(exc).__name__}"
        ) from exc


def require_identifier(value: Any, field: str = "email") -> str:
    if not isinstance(value, str):
        raise ValidationError(field, "is required")
    identifier = normalize_identifier(value)
    if not identifier:
        raise ValidationError(field, "is required")
    return identifier


def require_text(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValidationError(field, "is required")
    return value


class CredentialLifecycleManager:
    """Authenticate principals of one kind and guard their access tokens."""

    def __init__(
        self,
        policy: KindPolicy,
        principals: PrincipalStore,
        tokens: TokenStore,
        *,
        clock: Clock = default_clock,
    ) -> None:
        self.policy = policy
        self.principals = principals
        self.tokens = tokens
        self._clock = clock
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def kind(self) -> PrincipalKind:
        return self.policy.kind

    def _logger(self, principal: str | None, correlation_id: str | None) -> logging.LoggerAdapter:
        return get_credentials_logger(
            base_logger_name=_LOG.name,
            principal_kind=self.kind.value,
            principal=principal,
            correlation_id=correlation_id,
        )

    # ------------------------------------------------------------------ #
    # Public API called by HTTP handlers                                 #
    # ------------------------------------------------------------------ #
    async def authenticate(
        self,
        principal_identifier: str,
        client_timestamp: Any,
        challenge_digest: str,
        *,
        correlation_id: str | None = None,
    ) -> Result[IssuedToken]:
        """Verify a challenge digest and issue a fresh access token.

        Parameters
        ----------
        principal_identifier:
            Email the principal is registered under; trimmed and case-folded.
        client_timestamp:
            The instant the client signed (ISO-8601 string, ``datetime`` or
            epoch milliseconds).
        challenge_digest:
            ``KeyedHash(secret, identifier + canonical(client_timestamp))``.

        Returns
        -------
        Result[IssuedToken]
            The new token and its TTL, or one of ``ValidationError``,
            ``UnknownPrincipal``, ``InvalidChallenge``, ``StoreUnavailable``.
        """
        log = self._logger(normalize_identifier(principal_identifier), correlation_id)
        try:
            issued = await self._authenticate(principal_identifier, client_timestamp, challenge_digest)
        except CredentialError as exc:
            log.info("Authentication rejected: %s", exc.code)
            return Result.failure(exc)
        log.info("Issued access token (ttl=%sms)", issued.ttl_millis)
        return Result.success(issued)

    async def verify(
        self,
        principal_identifier: str,
        presented_token: str,
        *,
        correlation_id: str | None = None,
    ) -> Result[str]:
        """Check that *presented_token* is the principal's live access token.

        On success the value is the normalized principal identifier.
        """
        try:
            identifier = await self._verify(principal_identifier, presented_token, correlation_id)
        except CredentialError as exc:
            self._logger(normalize_identifier(principal_identifier), correlation_id).info(
                "Access check rejected: %s", exc.code
            )
            return Result.failure(exc)
        return Result.success(identifier)

    async def revoke(
        self,
        principal_identifier: str,
        presented_token: str,
        *,
        correlation_id: str | None = None,
    ) -> Result[None]:
        """Delete the caller's access token after verifying it."""
        log = self._logger(normalize_identifier(principal_identifier), correlation_id)
        try:
            identifier = await self._verify(principal_identifier, presented_token, correlation_id)
            await guarded(self.tokens.delete_access_token(identifier), kind=self.kind)
        except CredentialError as exc:
            log.info("Revocation rejected: %s", exc.code)
            return Result.failure(exc)
        log.info("Revoked access token")
        return Result.success(None)

    async def sweep_expired(self) -> int:
        """Delete every expired access token; return how many were removed.

        Raises
        ------
        StoreUnavailable
            If the token store cannot be listed or written.
        """
        now = now_millis(self._clock)
        records = await guarded(self.tokens.list_access_tokens(), kind=self.kind)
        removed = 0
        for record in records:
            if not record.is_expired(now):
                continue
            # re-read so a token rotated since the listing survives
            current = await guarded(
                self.tokens.get_access_token(record.principal_identifier), kind=self.kind
            )
            if current is not None and current.is_expired(now):
                await guarded(
                    self.tokens.delete_access_token(record.principal_identifier), kind=self.kind
                )
                removed += 1
        if removed:
            _LOG.info("Swept %d expired %s access token(s)", removed, self.kind.value)
        return removed

    async def drain(self) -> None:
        """Wait for detached expiry deletions still in flight."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    # ---------------- internal helpers --------------------------------- #
    async def _authenticate(
        self, principal_identifier: Any, client_timestamp: Any, challenge_digest: Any
    ) -> IssuedToken:
        identifier = require_identifier(principal_identifier)
        try:
            moment = codec.parse_timestamp(client_timestamp)
        except ValueError as exc:
            raise ValidationError("date", f"invalid date format ({exc})") from None
        presented = require_text(challenge_digest, "auth_token")

        principal = await guarded(self.principals.get_principal(identifier), kind=self.kind)
        if principal is None:
            raise UnknownPrincipal(f"No {self.kind.value} found with email '{identifier}'")

        expected = codec.challenge_digest(principal.secret, identifier, moment)
        if not codec.digests_match(presented, expected):
            raise InvalidChallenge()

        created_at = now_millis(self._clock)
        ttl = self.policy.access_ttl_millis
        token_value = codec.access_token_value(principal.secret, identifier, created_at, ttl)
        await guarded(
            self.tokens.upsert_access_token(identifier, token_value, created_at, ttl),
            kind=self.kind,
        )
        return IssuedToken(token_value=token_value, ttl_millis=ttl)

    async def _verify(
        self, principal_identifier: Any, presented_token: Any, correlation_id: str | None
    ) -> str:
        identifier = require_identifier(principal_identifier)
        presented = require_text(presented_token, "access_token")

        principal, record = await self._lookup(identifier)
        if principal is None:
            raise UnknownPrincipal(f"No {self.kind.value} found with email '{identifier}'")

        if record is not None and record.is_expired(now_millis(self._clock)):
            await self._expire(identifier, correlation_id)
            record = None

        if record is None or not codec.digests_match(presented, record.token_value):
            raise InvalidOrExpiredToken(
                f"Invalid access token for the {self.kind.value} with email '{identifier}'"
            )
        return identifier

    async def _lookup(self, identifier: str) -> tuple[Principal | None, TokenRecord | None]:
        """Fetch principal and access token concurrently, then join."""
        outcomes = await asyncio.gather(
            guarded(self.principals.get_principal(identifier), kind=self.kind),
            guarded(self.tokens.get_access_token(identifier), kind=self.kind),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        principal, record = outcomes
        return principal, record  # type: ignore[return-value]

    async def _expire(self, identifier: str, correlation_id: str | None) -> None:
        if self.policy.detach_expiry_deletes:
            task = asyncio.create_task(self._delete_expired(identifier, correlation_id))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            return
        await self._delete_expired(identifier, correlation_id)

    async def _delete_expired(self, identifier: str, correlation_id: str | None) -> None:
        log = self._logger(identifier, correlation_id)
        try:
            await guarded(self.tokens.delete_access_token(identifier), kind=self.kind)
        except StoreUnavailable as exc:
            log.warning("Could not delete expired access token: %s", exc)
            return
        log.debug("Deleted expired access token")
