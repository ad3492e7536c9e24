"""Tests for environment-based configuration."""

import pytest

from rssfeed_mailer.config import DEFAULT_DB_PATH, Config, load_config
from rssfeed_mailer.errors import ConfigError


def test_defaults():
    config = load_config({})

    assert config.db_path == DEFAULT_DB_PATH
    assert config.store_open_timeout == 1.0
    assert config.fetch_concurrency == 20
    assert config.fetch_timeout == 60.0
    assert config.retention_days is None
    assert config.recipient is None


def test_reads_environment():
    config = load_config({
        "RSS_DB_PATH": "/var/lib/feeds.db",
        "RSS_DB_TIMEOUT": "2.5",
        "RSS_FETCH_CONCURRENCY": "5",
        "RSS_RETENTION_DAYS": "90",
        "RSS_RECIPIENT": "reader@example.com",
        "RSS_SMTP_SERVER": "smtp.example.com:465",
        "RSS_SMTP_USER": "feeds@example.com",
        "RSS_SMTP_PASSWORD": "hunter2",
    })

    assert config.db_path == "/var/lib/feeds.db"
    assert config.store_open_timeout == 2.5
    assert config.fetch_concurrency == 5
    assert config.retention_days == 90
    config.require_delivery_settings()


@pytest.mark.parametrize(
    "env",
    [
        {"RSS_FETCH_CONCURRENCY": "lots"},
        {"RSS_FETCH_CONCURRENCY": "0"},
        {"RSS_DB_TIMEOUT": "soon"},
        {"RSS_DB_TIMEOUT": "0"},
        {"RSS_FETCH_TIMEOUT": "-1"},
        {"RSS_RETENTION_DAYS": "-1"},
    ],
)
def test_invalid_values(env):
    with pytest.raises(ConfigError):
        load_config(env)


def test_missing_delivery_settings_are_listed():
    config = Config(recipient="reader@example.com", smtp_user="feeds@example.com")

    with pytest.raises(ConfigError) as exc_info:
        config.require_delivery_settings()

    assert "RSS_SMTP_SERVER" in str(exc_info.value)
    assert "RSS_SMTP_PASSWORD" in str(exc_info.value)
    assert "RSS_RECIPIENT" not in str(exc_info.value)
