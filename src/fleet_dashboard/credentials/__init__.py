"""Credential & access-token lifecycle core.

This namespace hosts reusable, **HTTP-agnostic** building blocks shared by the
admin and user halves of the dashboard API.

Sub-modules
-----------
clock
    Test-friendly time abstraction.
codec
    Keyed-hash digests, canonical timestamps and registration token shape.
models
    Immutable dataclasses for principals, token records and results.
errors
    Exception types describing every credential failure.
store
    Principal / token store protocols with memory and disk implementations.
service
    The challenge verifier and access guard engine.
registration
    Registration-token issuance for onboarding users.
log_utils
    Structured logging helpers (thin wrapper around :pymod:`logging`).

All public objects are re-exported here for convenience.
"""

from __future__ import annotations

from .clock import Clock, default_clock, now_millis  # noqa: F401
from .codec import (  # noqa: F401
    access_token_value,
    canonical_timestamp,
    challenge_digest,
    generate_registration_token,
    keyed_hash,
    parse_timestamp,
)
from .errors import (  # noqa: F401
    AlreadyExists,
    CredentialError,
    InvalidChallenge,
    InvalidOrExpiredToken,
    InvalidTargetIdentifier,
    StoreUnavailable,
    UnknownPrincipal,
    ValidationError,
)
from .log_utils import get_credentials_logger  # noqa: F401
from .models import (  # noqa: F401
    IssuedToken,
    KindPolicy,
    Principal,
    PrincipalKind,
    Result,
    TokenRecord,
    normalize_identifier,
)
from .registration import RegistrationIssuer, validate_target_email  # noqa: F401
from .service import CredentialLifecycleManager  # noqa: F401
from .store import (  # noqa: F401
    DiskCredentialStore,
    MemoryCredentialStore,
    PrincipalStore,
    TokenStore,
)

__all__ = [
    # clock
    "Clock",
    "default_clock",
    "now_millis",
    # codec
    "access_token_value",
    "canonical_timestamp",
    "challenge_digest",
    "generate_registration_token",
    "keyed_hash",
    "parse_timestamp",
    # errors
    "AlreadyExists",
    "CredentialError",
    "InvalidChallenge",
    "InvalidOrExpiredToken",
    "InvalidTargetIdentifier",
    "StoreUnavailable",
    "UnknownPrincipal",
    "ValidationError",
    # models
    "IssuedToken",
    "KindPolicy",
    "Principal",
    "PrincipalKind",
    "Result",
    "TokenRecord",
    "normalize_identifier",
    # engines
    "CredentialLifecycleManager",
    "RegistrationIssuer",
    "validate_target_email",
    # stores
    "DiskCredentialStore",
    "MemoryCredentialStore",
    "PrincipalStore",
    "TokenStore",
    # logging helpers
    "get_credentials_logger",
]
