"""
Voteshare -- centralised configuration via pydantic-settings.

Every tunable knob lives here.  Environment variables override defaults
using the ``VOTESHARE_`` prefix (e.g. ``VOTESHARE_MODE=BROADCAST``).

Server owners usually keep the plugin-style keys (``redis.host``,
``poll-interval``, ...) in a config file; :meth:`VoteShareSettings.from_mapping`
accepts those as-is.

Usage:
    from voteshare.config.settings import get_settings
    settings = get_settings()          # cached singleton
    print(settings.redis_host)
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Mapping, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


# Plugin-style config key (hyphens normalised to underscores) -> field name.
_CONFIG_KEYS: dict[str, str] = {
    "mode": "mode",
    "redis.host": "redis_host",
    "redis.port": "redis_port",
    "redis.auth": "redis_auth",
    "redis.max_idle": "redis_max_idle",
    "poll_interval": "poll_interval",
    "allow_unsafe_interval": "allow_unsafe_interval",
    "initial_delay": "initial_delay",
    "buffer_capacity": "buffer_capacity",
    "upstream_plugin": "upstream_plugin",
    "log_level": "log_level",
    "log_format": "log_format",
    "metrics.enabled": "metrics_enabled",
    "metrics.port": "prometheus_port",
}


def _flatten(mapping: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten nested sections into dotted keys: {"redis": {"host": h}} -> {"redis.host": h}."""
    flat: dict[str, Any] = {}
    for key, value in mapping.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, Mapping):
            flat.update(_flatten(value, prefix=f"{dotted}."))
        else:
            flat[dotted] = value
    return flat


class VoteShareSettings(BaseSettings):
    """Top-level configuration for a vote relay node."""

    # ------------------------------------------------------------------
    # Mode
    # ------------------------------------------------------------------
    mode: str = "RECEIVER"  # BROADCAST | RECEIVER (case-sensitive)

    # ------------------------------------------------------------------
    # Redis
    # ------------------------------------------------------------------
    redis_host: str = "127.0.0.1"
    redis_port: int = 6379
    redis_auth: str = ""  # empty = no AUTH
    redis_max_idle: Optional[int] = None  # total connection cap, None = unbounded

    # ------------------------------------------------------------------
    # Broadcast timer (server ticks, 20 per second)
    # ------------------------------------------------------------------
    poll_interval: int = 100
    allow_unsafe_interval: bool = False
    initial_delay: int = 60
    buffer_capacity: int = Field(default=2048, ge=1)

    # ------------------------------------------------------------------
    # Upstream vote listener
    # ------------------------------------------------------------------
    upstream_plugin: str = "Votifier"

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------
    log_level: str = "INFO"
    log_format: str = "json"  # json | text
    metrics_enabled: bool = False
    prometheus_port: int = 8000

    # ------------------------------------------------------------------
    # Pydantic-settings config
    # ------------------------------------------------------------------
    model_config = SettingsConfigDict(
        env_prefix="VOTESHARE_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> VoteShareSettings:
        """Build settings from plugin-style config keys.

        Accepts dotted (``"redis.host"``) or nested (``{"redis": {...}}``)
        keys, with hyphens or underscores.  Unknown keys are ignored.
        Values given here take precedence over environment variables.
        """
        values: dict[str, Any] = {}
        for key, value in _flatten(mapping).items():
            field = _CONFIG_KEYS.get(key.replace("-", "_"))
            if field is None:
                logger.debug("Ignoring unknown config key %r", key)
                continue
            values[field] = value
        return cls(**values)


@lru_cache(maxsize=1)
def get_settings() -> VoteShareSettings:
    """Return a cached singleton of the application settings.

    Call ``get_settings.cache_clear()`` in tests to reset.
    """
    return VoteShareSettings()
