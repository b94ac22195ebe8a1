"""Shared pytest configuration."""

import pytest


@pytest.fixture(scope="session")
def anyio_backend():
    """The credential service is built on asyncio; run anyio tests there only."""
    return "asyncio"
