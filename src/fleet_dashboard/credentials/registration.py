"""Registration-token issuance for onboarding new users.

Issuing a registration token is itself a protected operation: the caller must
pass the access guard of the manager the issuer is bound to (normally the
admin manager).  Tokens are 16 letters from a CSPRNG and live in the
registration namespace of the *user* token store, keyed by the target email.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from email_validator import EmailNotValidError, validate_email

from fleet_dashboard.credentials import codec
from fleet_dashboard.credentials.clock import Clock, default_clock, now_millis
from fleet_dashboard.credentials.errors import (
    AlreadyExists,
    CredentialError,
    InvalidTargetIdentifier,
    ValidationError,
)
from fleet_dashboard.credentials.log_utils import get_credentials_logger
from fleet_dashboard.credentials.models import (
    REGISTRATION_TOKEN_TTL_MILLIS,
    IssuedToken,
    PrincipalKind,
    Result,
    normalize_identifier,
)
from fleet_dashboard.credentials.service import CredentialLifecycleManager, guarded
from fleet_dashboard.credentials.store import PrincipalStore, TokenStore

_LOG = logging.getLogger("fleet-dashboard.credentials.registration")


def validate_target_email(value: Any) -> str:
    """Return the normalized email or raise for anything not an address."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("user_email", "is required")
    try:
        validate_email(value.strip(), check_deliverability=False)
    except EmailNotValidError:
        raise InvalidTargetIdentifier(
            "user_email", f"'{value.strip()}' is not a valid email address"
        ) from None
    return normalize_identifier(value)


class RegistrationIssuer:
    """Hand out onboarding tokens for user identifiers that do not exist yet."""

    def __init__(
        self,
        guard: CredentialLifecycleManager,
        registrations: TokenStore,
        *,
        user_directory: PrincipalStore | None = None,
        ttl_millis: int = REGISTRATION_TOKEN_TTL_MILLIS,
        reject_existing: bool = True,
        email_check: Callable[[Any], str] = validate_target_email,
        token_factory: Callable[[], str] = codec.generate_registration_token,
        clock: Clock = default_clock,
    ) -> None:
        if ttl_millis <= 0:
            raise ValueError("ttl_millis must be positive")
        self.guard = guard
        self.registrations = registrations
        self.user_directory = user_directory
        self.ttl_millis = ttl_millis
        self.reject_existing = reject_existing
        self._email_check = email_check
        self._token_factory = token_factory
        self._clock = clock

    async def issue_registration(
        self,
        caller_identifier: str,
        caller_token: str,
        target_user_identifier: str,
        *,
        correlation_id: str | None = None,
    ) -> Result[IssuedToken]:
        """Issue a registration token for *target_user_identifier*.

        The caller's credentials are checked first; their failure is returned
        unchanged.  Then the target must be a valid email and, when
        ``reject_existing`` is set, must not already be a known user.
        """
        access = await self.guard.verify(
            caller_identifier, caller_token, correlation_id=correlation_id
        )
        if not access.ok:
            return Result.failure(access.error)  # type: ignore[arg-type]

        log = get_credentials_logger(
            base_logger_name=_LOG.name,
            principal_kind=PrincipalKind.USER.value,
            principal=normalize_identifier(target_user_identifier),
            correlation_id=correlation_id,
        )
        try:
            issued = await self._issue(target_user_identifier)
        except CredentialError as exc:
            log.info("Registration rejected: %s", exc.code)
            return Result.failure(exc)
        log.info("Issued registration token (ttl=%sms) by %s", issued.ttl_millis, access.value)
        return Result.success(issued)

    async def sweep_expired(self) -> int:
        """Delete expired registration tokens; return how many were removed."""
        now = now_millis(self._clock)
        kind = PrincipalKind.USER
        removed = 0
        for record in await guarded(self.registrations.list_registration_tokens(), kind=kind):
            if not record.is_expired(now):
                continue
            current = await guarded(
                self.registrations.get_registration_token(record.principal_identifier), kind=kind
            )
            if current is not None and current.is_expired(now):
                await guarded(
                    self.registrations.delete_registration_token(record.principal_identifier),
                    kind=kind,
                )
                removed += 1
        if removed:
            _LOG.info("Swept %d expired registration token(s)", removed)
        return removed

    async def _issue(self, target_user_identifier: Any) -> IssuedToken:
        target = self._email_check(target_user_identifier)

        if self.reject_existing and self.user_directory is not None:
            if await guarded(self.user_directory.exists(target), kind=PrincipalKind.USER):
                raise AlreadyExists(f"There is already a user with the email '{target}'")

        token_value = self._token_factory()
        created_at = now_millis(self._clock)
        await guarded(
            self.registrations.upsert_registration_token(
                target, token_value, created_at, self.ttl_millis
            ),
            kind=PrincipalKind.USER,
        )
        return IssuedToken(token_value=token_value, ttl_millis=self.ttl_millis)
