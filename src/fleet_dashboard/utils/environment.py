"""Settings resolved from environment variables at server startup."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Literal, Tuple

from fleet_dashboard.credentials.models import (
    ACCESS_TOKEN_TTL_MILLIS,
    REGISTRATION_TOKEN_TTL_MILLIS,
)

logger = logging.getLogger("fleet-dashboard.utils.environment")

_TRUTHY: Final[Tuple[str, ...]] = ("true", "1", "yes", "y", "on")

StoreBackend = Literal["disk", "memory"]


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in _TRUTHY


def _flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return _truthy(raw)


def _int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    """Everything the app factory needs to wire stores and engines."""

    store_backend: StoreBackend = "disk"
    storage_dir: Path = Path.home() / ".fleet-dashboard" / "credentials"
    admin_access_ttl_millis: int = ACCESS_TOKEN_TTL_MILLIS
    user_access_ttl_millis: int = ACCESS_TOKEN_TTL_MILLIS
    registration_ttl_millis: int = REGISTRATION_TOKEN_TTL_MILLIS
    reject_existing_users: bool = True
    detach_expiry_deletes: bool = False
    sweep_interval_seconds: int = 0
    host: str = "0.0.0.0"
    port: int = 4000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from ``FLEET_*`` environment variables.

        Raises
        ------
        ValueError
            If a numeric variable is malformed or the backend is unknown.
        """
        backend = (os.getenv("FLEET_STORE_BACKEND") or "disk").strip().lower()
        if backend not in ("disk", "memory"):
            raise ValueError(f"FLEET_STORE_BACKEND must be 'disk' or 'memory', got {backend!r}")

        storage_dir = Path(
            os.getenv("FLEET_STORAGE_DIR") or cls.storage_dir
        ).expanduser()

        settings = cls(
            store_backend=backend,  # type: ignore[arg-type]
            storage_dir=storage_dir,
            admin_access_ttl_millis=_int("FLEET_ADMIN_ACCESS_TTL_MS", ACCESS_TOKEN_TTL_MILLIS, minimum=1),
            user_access_ttl_millis=_int("FLEET_USER_ACCESS_TTL_MS", ACCESS_TOKEN_TTL_MILLIS, minimum=1),
            registration_ttl_millis=_int(
                "FLEET_REGISTRATION_TTL_MS", REGISTRATION_TOKEN_TTL_MILLIS, minimum=1
            ),
            reject_existing_users=_flag("FLEET_REJECT_EXISTING_USERS", True),
            detach_expiry_deletes=_flag("FLEET_DETACH_EXPIRY_DELETES", False),
            sweep_interval_seconds=_int("FLEET_SWEEP_INTERVAL_SECONDS", 0),
            host=os.getenv("FLEET_HOST") or "0.0.0.0",
            port=_int("FLEET_PORT", 4000, minimum=1),
            log_level=(os.getenv("FLEET_LOG_LEVEL") or "INFO").strip().upper(),
        )
        logger.debug(
            "Resolved settings backend=%s sweep=%ss detach_deletes=%s",
            settings.store_backend,
            settings.sweep_interval_seconds,
            settings.detach_expiry_deletes,
        )
        return settings
