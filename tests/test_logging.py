"""
Tests for structured logging configuration.
"""
import logging

import pytest
import structlog

from settlement.config import Settings
from settlement.monitoring.logging import (
    add_app_context,
    build_app_context,
    database_dialect,
    setup_logging,
)


class TestLogging:
    """Test suite for logging setup."""

    @pytest.fixture
    def restore_logging(self) -> None:
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        structlog.reset_defaults()
        for handler in root.handlers[:]:
            root.removeHandler(handler)
        for handler in handlers:
            root.addHandler(handler)
        root.setLevel(level)

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "url, expected",
        [
            ("sqlite+aiosqlite:///./settlement.db", "sqlite"),
            ("postgresql+asyncpg://u:p@db:5432/shop", "postgresql"),
            ("postgresql://db/shop", "postgresql"),
        ],
    )
    def test_database_dialect(self, url: str, expected: str) -> None:
        assert database_dialect(url) == expected

    @pytest.mark.unit
    def test_app_context_processor(self) -> None:
        settings = Settings(
            database_url="postgresql+asyncpg://u:p@db/shop",
            app_env="staging",
            correlation_prefix="ticket",
        )
        processor = add_app_context(settings)

        event = processor(None, "info", {"event": "x", "app_env": "override"})

        assert event["db_dialect"] == "postgresql"
        assert event["correlation_prefix"] == "ticket"
        assert event["app_env"] == "override"
        assert build_app_context(settings)["app_env"] == "staging"

    @pytest.mark.unit
    def test_setup_logging_installs_json_handler(self, restore_logging: None) -> None:
        setup_logging(Settings(log_level="WARNING"))

        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
        assert logging.getLogger("aiosqlite").level == logging.WARNING
