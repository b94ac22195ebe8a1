"""Logging helpers shared by the server and the credential core."""

from __future__ import annotations

import logging

_MASK = "****"


def mask_sensitive(value: str | None, keep_chars: int = 4) -> str:
    """Return *value* with everything but the first *keep_chars* hidden.

    Short values are masked entirely so that nothing meaningful leaks.
    """
    if not value:
        return ""
    if len(value) <= keep_chars * 2:
        return _MASK
    return f"{value[:keep_chars]}{_MASK}"


def setup_logging(level: str | int = "INFO") -> logging.Logger:
    """Configure the root logger once and return the application logger."""
    if isinstance(level, str):
        resolved = logging.getLevelName(level.strip().upper())
        level = resolved if isinstance(resolved, int) else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    logger = logging.getLogger("fleet-dashboard")
    logger.setLevel(level)
    return logger
