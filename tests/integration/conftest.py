"""Configuration for integration tests.

Integration tests exercise the full app lifespan against a disk-backed
credential store.  They are skipped unless ``--integration`` is passed,
except for tests also marked ``ci_safe`` (temporary directories only).
"""

import pytest


def pytest_addoption(parser):
    """Register the --integration switch."""
    parser.addoption(
        "--integration",
        action="store_true",
        default=False,
        help="run integration tests that are not marked ci_safe",
    )


def pytest_collection_modifyitems(config, items):
    """Skip non-ci_safe integration tests unless --integration is given."""
    if config.getoption("--integration", default=False):
        return
    skip_integration = pytest.mark.skip(reason="Need --integration option to run")
    for item in items:
        if "integration" in item.keywords and "ci_safe" not in item.keywords:
            item.add_marker(skip_integration)
