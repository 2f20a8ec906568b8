"""Pytest configuration and fixtures."""

from __future__ import annotations

import os

import pytest
from structlog.testing import capture_logs

from flakeboard.config import get_settings


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests (requires FLAKEBOARD_DATABASE_URL)",
    )


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (require a PostgreSQL database)",
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless explicitly enabled."""
    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="need --run-integration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


@pytest.fixture(scope="session")
def database_url() -> str | None:
    """Get database URL from environment."""
    return os.environ.get("FLAKEBOARD_DATABASE_URL")


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Settings are lru_cached; isolate tests that patch the environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def captured_logs():
    """Capture structlog events as dicts."""
    with capture_logs() as logs:
        yield logs
