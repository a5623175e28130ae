"""
Pytest configuration for unibuild test suite.

This configuration enables the --full flag to run slow stress tests.
"""

import pytest


def pytest_addoption(parser):
    """Add custom command-line options."""
    parser.addoption(
        "--full",
        action="store_true",
        default=False,
        help="Run full test suite including slow stress tests",
    )


def pytest_collection_modifyitems(config, items):
    """Skip slow tests unless --full is given."""
    if config.getoption("--full"):
        return
    skip_slow = pytest.mark.skip(reason="slow test, use --full to run")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)
