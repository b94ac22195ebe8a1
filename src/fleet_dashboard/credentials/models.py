"""Typed, immutable records used by the credential core."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Final, Generic, TypeVar

from fleet_dashboard.credentials.errors import CredentialError

ACCESS_TOKEN_TTL_MILLIS: Final[int] = 60 * 60 * 1000
REGISTRATION_TOKEN_TTL_MILLIS: Final[int] = 6 * 60 * 60 * 1000

T = TypeVar("T")


class PrincipalKind(str, Enum):
    """The two account families served by one credential engine."""

    ADMIN = "admin"
    USER = "user"


def normalize_identifier(identifier: object) -> str:
    """Case-fold and trim an identifier before any store lookup."""
    if not isinstance(identifier, str):
        return ""
    return identifier.strip().casefold()


@dataclass(frozen=True, slots=True)
class Principal:
    """An admin or user account as returned by a principal store."""

    identifier: str
    secret: str = field(repr=False)
    display_email: str = ""
    kind: PrincipalKind = PrincipalKind.USER

    def public_view(self) -> dict[str, str]:
        """Return the record with the secret stripped."""
        return {
            "email": self.identifier,
            "display_email": self.display_email or self.identifier,
            "kind": self.kind.value,
        }


@dataclass(frozen=True, slots=True)
class TokenRecord:
    """Snapshot of a stored access or registration token."""

    principal_identifier: str
    token_value: str = field(repr=False)
    created_at: int  # epoch milliseconds
    ttl_millis: int

    @property
    def expires_at(self) -> int:
        return self.created_at + self.ttl_millis

    def is_expired(self, now: int) -> bool:
        """Return *True* once *now* is strictly past the expiry instant."""
        return self.expires_at < now


@dataclass(frozen=True, slots=True)
class IssuedToken:
    """What a successful issuance hands back to the caller."""

    token_value: str = field(repr=False)
    ttl_millis: int


@dataclass(frozen=True, slots=True)
class KindPolicy:
    """Per-kind tunables for the credential engine."""

    kind: PrincipalKind
    access_ttl_millis: int = ACCESS_TOKEN_TTL_MILLIS
    detach_expiry_deletes: bool = False

    def __post_init__(self) -> None:
        if self.access_ttl_millis <= 0:
            raise ValueError("access_ttl_millis must be positive")


@dataclass(frozen=True, slots=True)
class Result(Generic[T]):
    """Discriminated outcome of a public credential operation."""

    value: T | None = None
    error: CredentialError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T | None = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: CredentialError) -> "Result[T]":
        return cls(error=error)

    def unwrap(self) -> T | None:
        """Return the value or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value
