"""Shared fixtures: a throwaway database per test and a scripted fixture source."""

import pytest

import config
import models
from tests.helpers import StubSource


@pytest.fixture
def db(tmp_path, monkeypatch):
    """Point the store at a fresh sqlite file and create the schema."""
    path = tmp_path / "matchday-test.db"
    monkeypatch.setattr(config, "DB_PATH", str(path))
    monkeypatch.setattr(config, "RECOVERY_FETCH_DELAY_SECONDS", 0)
    monkeypatch.setattr(config, "TELEGRAM_ENABLED", False)
    models.init_db()
    return path


@pytest.fixture
def source():
    return StubSource()
