"""Server configuration.

Loads from config.yaml if present, with environment variable overrides.
Environment variables use the pattern: BEACON_<SECTION>_<KEY> (uppercase).
The short names used by earlier deployments (PORT, ADMIN_PASSWORD,
SESSION_SECRET, ANONYMIZE_IPS, IPINFO_TOKEN) are honoured too; the
BEACON_* form wins when both are set.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

DEFAULT_ADMIN_PASSWORD = "password"
DEFAULT_SESSION_SECRET = "changeme"


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8000
    env: str = "dev"  # "dev" or "prod"


@dataclass
class StorageConfig:
    path: str = "data/visits.jsonl"


@dataclass
class AdminConfig:
    password: str = DEFAULT_ADMIN_PASSWORD
    session_secret: str = DEFAULT_SESSION_SECRET
    session_max_age_seconds: int = 7 * 24 * 60 * 60
    cookie_name: str = "beacon_session"
    cookie_secure: bool = False


@dataclass
class PrivacyConfig:
    anonymize_ips: bool = False


@dataclass
class GeoConfig:
    enabled: bool = False
    token: str = ""
    base_url: str = "https://ipinfo.io"
    timeout_seconds: float = 4.0
    cache_ttl_seconds: float = 6 * 60 * 60


@dataclass
class LimitsConfig:
    track_max_requests: int = 120
    track_window_seconds: float = 60.0
    query_max_limit: int = 2000
    recent_limit: int = 100
    active_window_seconds: float = 300.0
    hub_outbox_size: int = 100


@dataclass
class LoggingConfig:
    level: str = "info"
    format: str = "console"  # "console" or "json"


@dataclass
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    admin: AdminConfig = field(default_factory=AdminConfig)
    privacy: PrivacyConfig = field(default_factory=PrivacyConfig)
    geo: GeoConfig = field(default_factory=GeoConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _bool(value: str | bool) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _apply_env_overrides(config: AppConfig) -> None:
    """Override config values from environment variables."""
    # Legacy names first so the BEACON_* spelling wins.
    mapping = {
        "PORT": lambda v: setattr(config.server, "port", int(v)),
        "ADMIN_PASSWORD": lambda v: setattr(config.admin, "password", v),
        "SESSION_SECRET": lambda v: setattr(config.admin, "session_secret", v),
        "ANONYMIZE_IPS": lambda v: setattr(config.privacy, "anonymize_ips", _bool(v)),
        "IPINFO_TOKEN": lambda v: setattr(config.geo, "token", v),
        "BEACON_SERVER_HOST": lambda v: setattr(config.server, "host", v),
        "BEACON_SERVER_PORT": lambda v: setattr(config.server, "port", int(v)),
        "BEACON_SERVER_ENV": lambda v: setattr(config.server, "env", v),
        "BEACON_STORAGE_PATH": lambda v: setattr(config.storage, "path", v),
        "BEACON_ADMIN_PASSWORD": lambda v: setattr(config.admin, "password", v),
        "BEACON_ADMIN_SESSION_SECRET": lambda v: setattr(config.admin, "session_secret", v),
        "BEACON_ADMIN_SESSION_MAX_AGE": lambda v: setattr(config.admin, "session_max_age_seconds", int(v)),
        "BEACON_ADMIN_COOKIE_SECURE": lambda v: setattr(config.admin, "cookie_secure", _bool(v)),
        "BEACON_PRIVACY_ANONYMIZE_IPS": lambda v: setattr(config.privacy, "anonymize_ips", _bool(v)),
        "BEACON_GEO_ENABLED": lambda v: setattr(config.geo, "enabled", _bool(v)),
        "BEACON_GEO_TOKEN": lambda v: setattr(config.geo, "token", v),
        "BEACON_GEO_BASE_URL": lambda v: setattr(config.geo, "base_url", v),
        "BEACON_GEO_TIMEOUT": lambda v: setattr(config.geo, "timeout_seconds", float(v)),
        "BEACON_GEO_CACHE_TTL": lambda v: setattr(config.geo, "cache_ttl_seconds", float(v)),
        "BEACON_LIMITS_TRACK_MAX_REQUESTS": lambda v: setattr(config.limits, "track_max_requests", int(v)),
        "BEACON_LIMITS_TRACK_WINDOW": lambda v: setattr(config.limits, "track_window_seconds", float(v)),
        "BEACON_LIMITS_QUERY_MAX_LIMIT": lambda v: setattr(config.limits, "query_max_limit", int(v)),
        "BEACON_LIMITS_ACTIVE_WINDOW": lambda v: setattr(config.limits, "active_window_seconds", float(v)),
        "BEACON_LOG_LEVEL": lambda v: setattr(config.logging, "level", v),
        "BEACON_LOG_FORMAT": lambda v: setattr(config.logging, "format", v),
    }
    for env_key, setter in mapping.items():
        val = os.environ.get(env_key)
        if val is not None:
            setter(val)


_BOOL_FIELDS = {
    ("admin", "cookie_secure"),
    ("privacy", "anonymize_ips"),
    ("geo", "enabled"),
}


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load configuration from YAML file + environment overrides."""
    config = AppConfig()

    if config_path is None:
        config_path = Path(os.environ.get("BEACON_CONFIG", "config.yaml"))
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

        for section_name in ("server", "storage", "admin", "privacy", "geo", "limits", "logging"):
            section = getattr(config, section_name)
            for k, v in (raw.get(section_name) or {}).items():
                if not hasattr(section, k):
                    continue
                if (section_name, k) in _BOOL_FIELDS:
                    v = _bool(v)
                setattr(section, k, v)

    # Environment overrides always win
    _apply_env_overrides(config)
    return config
