import os
from pathlib import Path
from unittest import mock

from slimdeps.config import Settings


def test_defaults():
    """Defaults scrape sequentially with a one-week freshness window."""
    with mock.patch.dict(os.environ, {}, clear=True):
        settings = Settings()
    assert settings.scrape_concurrency == 1
    assert settings.freshness_days == 7.0
    assert settings.history_limit == 10
    assert settings.package_timeout > 0


def test_env_override():
    """Settings are read from case-insensitive environment variables."""
    env = {"FRESHNESS_DAYS": "1.5", "scrape_concurrency": "4", "MAX_RETRIES": "5"}
    with mock.patch.dict(os.environ, env, clear=True):
        settings = Settings()
    assert settings.freshness_days == 1.5
    assert settings.scrape_concurrency == 4
    assert settings.max_retries == 5


def test_freshness_seconds():
    assert Settings(freshness_days=2).freshness_seconds() == 2 * 86400


def test_catalog_db_path_default(tmp_path):
    settings = Settings(data_dir=str(tmp_path))
    assert settings.get_data_dir() == tmp_path
    assert settings.get_catalog_db_path() == tmp_path / "catalog.db"


def test_catalog_db_path_explicit(tmp_path):
    settings = Settings(data_dir=str(tmp_path), catalog_db_path=str(tmp_path / "x.db"))
    assert settings.get_catalog_db_path() == tmp_path / "x.db"


def test_data_dir_home_default():
    settings = Settings(data_dir="")
    assert settings.get_data_dir() == Path.home() / ".slimdeps"


def test_suggestions_path():
    assert Settings(suggestions_path="").get_suggestions_path() is None
    assert Settings(suggestions_path="/tmp/map.json").get_suggestions_path() == Path(
        "/tmp/map.json"
    )
