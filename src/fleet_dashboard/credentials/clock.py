"""Clock abstraction for testable time handling in the credential core.

This module defines a `Clock` protocol representing callables that return the
current UNIX timestamp as ``float``.  All expiry decisions inside the
credentials package MUST depend on an injected ``Clock`` instance rather than
calling ``time.time()`` or ``datetime.now()`` directly.

Example
-------
>>> from fleet_dashboard.credentials.clock import default_clock, now_millis
>>> isinstance(now_millis(default_clock), int)
True
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Callable protocol returning *seconds* since the UNIX epoch."""

    def __call__(self) -> float: ...


def default_clock() -> float:
    """Default implementation that delegates to ``time.time()``."""
    return time.time()


def now_millis(clock: Clock = default_clock) -> int:
    """Return the clock reading as whole milliseconds since the epoch."""
    return round(clock() * 1000)
