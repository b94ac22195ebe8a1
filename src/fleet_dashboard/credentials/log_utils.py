"""Structured logging helpers for credential components.

This module purposefully restricts **which** contextual attributes are attached
to log records in order to avoid accidentally leaking secrets.  All helpers
ONLY inject the following *non-sensitive* fields:

- ``principal_kind`` – ``admin`` or ``user``
- ``principal``      – The principal identifier, masked to its first 3 chars
- ``correlation_id`` – Request correlation id set by the HTTP middleware

Secrets, challenge digests and token values are never accepted here.

Usage
-----
>>> from fleet_dashboard.credentials.log_utils import get_credentials_logger
>>> log = get_credentials_logger(principal_kind="admin", principal="a@b.com")
>>> log.info("Issued access token")
INFO fleet-dashboard.credentials principal_kind=admin principal=a@b**** ...
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping

from fleet_dashboard.utils.logging import mask_sensitive


class _CredentialsLoggerAdapter(logging.LoggerAdapter):
    """Inject whitelisted credential context into log records."""

    extra_keys = ("principal_kind", "principal", "correlation_id")

    def __init__(self, logger: logging.Logger, extra: Mapping[str, Any] | None = None):
        extra_clean: MutableMapping[str, Any] = {}
        for k in self.extra_keys:
            if k == "principal" and extra and extra.get("principal"):
                extra_clean[k] = mask_sensitive(str(extra["principal"]), 3)
            elif extra and extra.get(k) is not None:
                extra_clean[k] = extra[k]
        super().__init__(logger, extra_clean)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        if "extra" not in kwargs or kwargs["extra"] is None:
            kwargs["extra"] = {}
        # merge but do not overwrite call-site provided extras
        for k, v in self.extra.items():
            kwargs["extra"].setdefault(k, v)
        context = " ".join(f"{k}={v}" for k, v in self.extra.items())
        return (f"{msg} [{context}]" if context else msg), kwargs


def get_credentials_logger(
    *,
    base_logger_name: str = "fleet-dashboard.credentials",
    principal_kind: str | None = None,
    principal: str | None = None,
    correlation_id: str | None = None,
) -> logging.LoggerAdapter:
    """Return a LoggerAdapter pre-filled with credential context."""
    logger = logging.getLogger(base_logger_name)
    return _CredentialsLoggerAdapter(
        logger,
        {
            "principal_kind": principal_kind,
            "principal": principal,
            "correlation_id": correlation_id,
        },
    )
