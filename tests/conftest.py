"""
Pytest fixtures for the intake tests.
"""

from __future__ import annotations

import pytest

from config.settings import Settings
import core.radar_store as store
from fakes import FakeCreator, ScriptedSource


@pytest.fixture
def settings() -> Settings:
    return Settings(
        anthropic_api_key="test-key",
        debounce_ms=10,
        min_input_length=3,
        service_url="http://radar.test",
    )


@pytest.fixture
def source() -> ScriptedSource:
    return ScriptedSource()


@pytest.fixture
def creator() -> FakeCreator:
    return FakeCreator()


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    """Point DB_PATH to a fresh temp file for each test."""
    db_file = tmp_path / "test_radars.db"
    monkeypatch.setenv("DB_PATH", str(db_file))
    store.init_db()
    yield db_file
