"""Exception types raised by the credential core.

Only lightweight, **data-carrying** exceptions live here so that the HTTP
layer can transform them into responses without inspecting messages.  None of
them ever carries a secret, a challenge digest or a token value.
"""

from __future__ import annotations

from typing import ClassVar


class CredentialError(RuntimeError):
    """Base class for every failure the credential core reports."""

    code: ClassVar[str] = "credential_error"
    status_code: ClassVar[int] = 400
    retryable: ClassVar[bool] = False
    default_message: ClassVar[str] = "Credential check failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    def to_payload(self) -> dict[str, object]:
        """Return a JSON-serialisable payload **without secrets**."""
        return {
            "error": self.code,
            "message": str(self),
            "messages": [str(self)],
        }


class ValidationError(CredentialError):
    """Malformed or missing input; the caller can fix the request."""

    code = "validation_error"

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"{field}: {reason}")
        self.field: str = field
        self.reason: str = reason

    def to_payload(self) -> dict[str, object]:
        payload = super().to_payload()
        payload["field"] = self.field
        return payload


class InvalidTargetIdentifier(ValidationError):
    """The identifier a registration token was requested for is not an email."""

    code = "invalid_target_identifier"


class UnknownPrincipal(CredentialError):
    code = "unknown_principal"
    status_code = 401
    default_message = "No principal is registered under this identifier."


class InvalidChallenge(CredentialError):
    code = "invalid_challenge"
    status_code = 401
    default_message = "Invalid authorization token."


class InvalidOrExpiredToken(CredentialError):
    code = "invalid_or_expired_token"
    status_code = 401
    default_message = "Invalid or expired access token."


class AlreadyExists(CredentialError):
    code = "already_exists"
    default_message = "A user with this identifier already exists."


class StoreUnavailable(CredentialError):
    """Transient infrastructure failure; callers may retry with backoff."""

    code = "store_unavailable"
    status_code = 503
    retryable = True
    default_message = "Credential store is unavailable."
