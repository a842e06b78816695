"""Shared pytest configuration and fixtures."""

from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from ar_wizard.config import Settings, get_settings
from ar_wizard.memory.manager import KnowledgeStore


class FakeClock:
    """Manually advanced UTC clock for TTL and expiry tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def _no_dotenv() -> Generator[None]:
    """Block .env loading so a developer's local settings never leak into tests."""
    get_settings.cache_clear()
    original = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    try:
        yield
    finally:
        Settings.model_config["env_file"] = original
        get_settings.cache_clear()


@pytest.fixture
def mock_settings() -> Generator[Any]:
    """Provide fake settings so tests don't depend on the environment.

    Patches get_settings at every import site so cached references are overridden.
    """
    fake_settings = type(
        "FakeSettings",
        (),
        {
            "memory_db_path": "",
            "context_default_ttl_ms": 3_600_000,
            "analysis_validity_hours": 24,
            "knowledge_archive_days": 30,
            "maintenance_schedule_cron": "",
            "metrics_port": 9108,
            "log_level": "INFO",
        },
    )()
    with (
        patch("ar_wizard.config.get_settings", return_value=fake_settings),
        patch("ar_wizard.memory.store.get_settings", return_value=fake_settings),
        patch("ar_wizard.memory.manager.get_settings", return_value=fake_settings),
        patch("ar_wizard.memory.scheduler.get_settings", return_value=fake_settings),
        patch("ar_wizard.cli.get_settings", return_value=fake_settings),
    ):
        yield fake_settings


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "knowledge.db")


@pytest.fixture
def store(db_path: str, clock: FakeClock, mock_settings: Any) -> KnowledgeStore:
    """A file-backed knowledge store driven by the fake clock."""
    mock_settings.memory_db_path = db_path
    return KnowledgeStore(db_path, clock=clock)
