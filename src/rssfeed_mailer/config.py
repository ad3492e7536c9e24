"""Environment-based configuration for RSS Feed Mailer."""

import os
from dataclasses import dataclass

from rssfeed_mailer.database import DEFAULT_TIMEOUT
from rssfeed_mailer.errors import ConfigError
from rssfeed_mailer.feed_parser import DEFAULT_FETCH_TIMEOUT
from rssfeed_mailer.fetch_pool import DEFAULT_WORKERS

DEFAULT_DB_PATH = "rssfeed_mailer.db"

_DELIVERY_SETTINGS = {
    "recipient": "RSS_RECIPIENT",
    "smtp_server": "RSS_SMTP_SERVER",
    "smtp_user": "RSS_SMTP_USER",
    "smtp_password": "RSS_SMTP_PASSWORD",
}


@dataclass
class Config:
    """Settings for one invocation."""

    db_path: str = DEFAULT_DB_PATH
    store_open_timeout: float = DEFAULT_TIMEOUT
    fetch_concurrency: int = DEFAULT_WORKERS
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    recipient: str | None = None
    smtp_server: str | None = None
    smtp_user: str | None = None
    smtp_password: str | None = None
    retention_days: int | None = None

    def require_delivery_settings(self) -> None:
        """Raise ConfigError naming every unset mail setting."""
        missing = [
            env for attr, env in _DELIVERY_SETTINGS.items() if not getattr(self, attr)
        ]
        if missing:
            raise ConfigError(f"Missing required settings: {', '.join(missing)}")


def load_config(environ: dict | None = None) -> Config:
    """Build a Config from RSS_* environment variables."""
    env = os.environ if environ is None else environ

    config = Config(
        db_path=env.get("RSS_DB_PATH", DEFAULT_DB_PATH),
        store_open_timeout=_number(env, "RSS_DB_TIMEOUT", float, DEFAULT_TIMEOUT),
        fetch_concurrency=_number(env, "RSS_FETCH_CONCURRENCY", int, DEFAULT_WORKERS),
        fetch_timeout=_number(env, "RSS_FETCH_TIMEOUT", float, DEFAULT_FETCH_TIMEOUT),
        retention_days=_number(env, "RSS_RETENTION_DAYS", int, None),
    )
    for attr, name in _DELIVERY_SETTINGS.items():
        setattr(config, attr, env.get(name) or None)

    if config.fetch_concurrency < 1:
        raise ConfigError("RSS_FETCH_CONCURRENCY must be at least 1")
    if config.store_open_timeout <= 0:
        raise ConfigError("RSS_DB_TIMEOUT must be greater than 0")
    if config.fetch_timeout <= 0:
        raise ConfigError("RSS_FETCH_TIMEOUT must be greater than 0")
    if config.retention_days is not None and config.retention_days < 1:
        raise ConfigError("RSS_RETENTION_DAYS must be at least 1")
    return config


def _number(env, name: str, kind: type, default):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return kind(raw)
    except ValueError:
        raise ConfigError(f"Invalid value for {name}: {raw!r}")
