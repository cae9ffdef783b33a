"""
Coordinator configuration.

Settings come from a named profile in ``configs/profiles.yaml`` and can be
overridden per key with ``RENDEZVOUS_*`` environment variables.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

CONFIG_DIR = Path(__file__).resolve().parent / "configs"
PROFILES_PATH = CONFIG_DIR / "profiles.yaml"
ENV_PREFIX = "RENDEZVOUS_"

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class CoordinatorConfig:
    profile: str = "default"
    host: str = "127.0.0.1"
    port: int = 3001
    log_level: str = "INFO"
    queue_size: int = 256
    ping_interval: float = 30.0
    pong_timeout: float = 60.0
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    def to_dict(self) -> dict:
        return {item.name: getattr(self, item.name) for item in fields(self)}


def _origins(value: Any) -> List[str]:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    raise ValueError(f"expected a list of origins, got {value!r}")


_CASTS = {
    "host": str,
    "port": int,
    "log_level": str,
    "queue_size": int,
    "ping_interval": float,
    "pong_timeout": float,
    "cors_origins": _origins,
}

_ENV_KEYS = {
    "HOST": "host",
    "PORT": "port",
    "LOG_LEVEL": "log_level",
    "QUEUE_SIZE": "queue_size",
    "PING_INTERVAL": "ping_interval",
    "PONG_TIMEOUT": "pong_timeout",
}


def read_profiles(path: Path = PROFILES_PATH) -> Dict[str, Dict[str, Any]]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            profiles = yaml.safe_load(handle) or {}
    except FileNotFoundError:
        LOG.warning("Profile file %s not found; using built-in defaults", path)
        return {}
    if not isinstance(profiles, dict):
        LOG.warning("Ignoring malformed profile file %s", path)
        return {}
    return profiles


def _apply_mapping(config: CoordinatorConfig, values: Mapping[str, Any]) -> CoordinatorConfig:
    updates = {}
    for key, value in values.items():
        cast = _CASTS.get(key)
        if cast is None:
            LOG.warning("Ignoring unknown config key '%s'", key)
            continue
        try:
            updates[key] = cast(value)
        except (TypeError, ValueError):
            LOG.warning("Ignoring invalid value for config key '%s': %r", key, value)
    return replace(config, **updates) if updates else config


def _apply_environment(config: CoordinatorConfig, environ: Mapping[str, str]) -> CoordinatorConfig:
    updates: Dict[str, Any] = {}
    for suffix, attr in _ENV_KEYS.items():
        raw = environ.get(ENV_PREFIX + suffix)
        if raw is None or raw.strip() == "":
            continue
        try:
            updates[attr] = _CASTS[attr](raw.strip())
        except ValueError:
            LOG.warning("Ignoring invalid value for %s%s: %s", ENV_PREFIX, suffix, raw)
    return replace(config, **updates) if updates else config


def load_config(
    profile: str = "default",
    *,
    path: Path = PROFILES_PATH,
    environ: Optional[Mapping[str, str]] = None,
) -> CoordinatorConfig:
    """
    Resolve a configuration from the profile file and the environment.

    Unknown profiles fall back to the dataclass defaults so a fresh checkout
    still starts.
    """

    profiles = read_profiles(path)
    config = CoordinatorConfig(profile=profile)
    values = profiles.get(profile)
    if values is None:
        LOG.warning("Profile '%s' not defined; using defaults", profile)
    elif isinstance(values, dict):
        config = _apply_mapping(config, values)
    return _apply_environment(config, os.environ if environ is None else environ)
