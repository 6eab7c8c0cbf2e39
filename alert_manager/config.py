"""
Settings loading.

Settings come from a YAML file (default `config/settings.yaml`), with
`${VAR}` placeholders expanded from the environment. A handful of
environment variables override the file, matching the deployment
conventions of the alert service:

    REDIS_HOST, REDIS_PORT, REDIS_ALERT_CHANNEL, ALERT_COOLDOWN_SECONDS
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional
import structlog
import yaml

logger = structlog.get_logger(__name__)


_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


@dataclass
class Settings:
    """Runtime settings for one alert cycle."""

    # Telemetry and rule stores
    telemetry_db_path: str = "data/telemetry.duckdb"
    rules_db_path: str = "data/alerts.duckdb"
    query_timeout_seconds: float = 10.0

    # Redis (cooldown cache + pub/sub)
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: Optional[str] = None
    redis_socket_timeout: float = 5.0

    # Alerting
    cooldown_seconds: int = 300
    cooldown_key_prefix: str = "cooldown:"
    alert_channel: str = "alerts"
    source_tag: str = "alert-cron"
    schema_version: str = "1.0"

    # Pipeline
    max_workers: int = 1
    log_level: str = "INFO"

    def validate(self) -> None:
        if self.cooldown_seconds <= 0:
            raise ValueError(f"cooldown_seconds must be positive, got {self.cooldown_seconds}")
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {self.max_workers}")
        if self.query_timeout_seconds <= 0:
            raise ValueError(
                f"query_timeout_seconds must be positive, got {self.query_timeout_seconds}"
            )


def _expand_env_vars(value: Any, environ: Mapping[str, str]) -> Any:
    """Expand ${VAR} in strings, recursively through dicts and lists."""
    if isinstance(value, str) and "${" in value:
        return _ENV_PATTERN.sub(lambda m: environ.get(m.group(1), m.group(0)), value)
    if isinstance(value, dict):
        return {k: _expand_env_vars(v, environ) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env_vars(v, environ) for v in value]
    return value


def _from_config(config: dict) -> dict[str, Any]:
    """Flatten the nested YAML layout into Settings fields."""
    storage = config.get("storage") or {}
    telemetry = storage.get("telemetry") or {}
    rules = storage.get("rules") or {}
    redis_config = storage.get("redis") or {}
    alerts = config.get("alerts") or {}
    pipeline = config.get("pipeline") or {}

    fields = {
        "telemetry_db_path": telemetry.get("path"),
        "rules_db_path": rules.get("path"),
        "query_timeout_seconds": pipeline.get("query_timeout_seconds"),
        "redis_host": redis_config.get("host"),
        "redis_port": redis_config.get("port"),
        "redis_db": redis_config.get("db"),
        "redis_password": redis_config.get("password"),
        "redis_socket_timeout": redis_config.get("socket_timeout"),
        "cooldown_seconds": alerts.get("cooldown_seconds"),
        "cooldown_key_prefix": alerts.get("cooldown_key_prefix"),
        "alert_channel": alerts.get("channel"),
        "source_tag": alerts.get("source"),
        "schema_version": alerts.get("version"),
        "max_workers": pipeline.get("max_workers"),
        "log_level": config.get("log_level"),
    }
    return {k: v for k, v in fields.items() if v is not None}


def _from_environ(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides = {
        "redis_host": environ.get("REDIS_HOST"),
        "redis_port": environ.get("REDIS_PORT"),
        "alert_channel": environ.get("REDIS_ALERT_CHANNEL"),
        "cooldown_seconds": environ.get("ALERT_COOLDOWN_SECONDS"),
    }
    return {k: v for k, v in overrides.items() if v}


def _coerce(fields: dict[str, Any]) -> dict[str, Any]:
    """Cast values (often strings from env or placeholders) to field types."""
    ints = ("redis_port", "redis_db", "cooldown_seconds", "max_workers")
    floats = ("query_timeout_seconds", "redis_socket_timeout")
    coerced = dict(fields)
    try:
        for name in ints:
            if name in coerced:
                coerced[name] = int(coerced[name])
        for name in floats:
            if name in coerced:
                coerced[name] = float(coerced[name])
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid setting value: {e}") from e
    if coerced.get("redis_password") == "":
        coerced["redis_password"] = None
    return coerced


def load_settings(
    path: str = "config/settings.yaml",
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """
    Load settings from YAML plus environment overrides.

    A missing file is not an error: defaults are used and a warning logged.

    Raises:
        ValueError: if a setting has an invalid value
    """
    environ = os.environ if environ is None else environ
    config_path = Path(path)

    if config_path.exists():
        with open(config_path) as f:
            config = yaml.safe_load(f) or {}
        config = _expand_env_vars(config, environ)
        logger.info("config_loaded", path=str(config_path))
    else:
        logger.warning("config_not_found_using_defaults", path=str(config_path))
        config = {}

    fields = _from_config(config)
    fields.update(_from_environ(environ))

    settings = Settings(**_coerce(fields))
    settings.validate()
    return settings
