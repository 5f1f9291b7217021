"""Pytest configuration and fixtures for prs1core tests."""

import logging

import pytest

from prs1core.config import Settings
from tests.helpers.synthetic_data import sample_chunk, sample_edf


def pytest_configure(config):
    """Register custom test markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests that do not require external dependencies"
    )
    config.addinivalue_line("markers", "parser: Tests for binary decoders")
    config.addinivalue_line(
        "markers", "business_logic: Tests for core analytics and aggregation"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests combining multiple components"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take significant time (>5 seconds)"
    )


@pytest.fixture(autouse=True)
def isolated_app_dir(tmp_path, monkeypatch):
    """Point config and log files at a temporary directory."""
    app_dir = tmp_path / "app"
    monkeypatch.setattr("prs1core.config.DEFAULT_APP_DIR", app_dir)
    monkeypatch.setattr("prs1core.logging_config.DEFAULT_LOG_DIR", app_dir / "logs")

    yield app_dir

    from prs1core.logging_config import PACKAGE_LOGGER, reset_logging

    reset_logging()
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(package_logger.handlers):
        if not isinstance(handler, logging.NullHandler):
            package_logger.removeHandler(handler)
            handler.close()
    package_logger.propagate = True


@pytest.fixture
def settings():
    """Default settings."""
    return Settings()


@pytest.fixture
def card_dir(tmp_path):
    """A card export with one chunk file, one EDF file and one unrelated file."""
    root = tmp_path / "card" / "P-Series" / "P1234"
    root.mkdir(parents=True)
    (root / "0000001.001").write_bytes(sample_chunk())
    (root / "0000001.edf").write_bytes(sample_edf())
    (root / "notes.txt").write_text("not a card file")
    return tmp_path / "card"
