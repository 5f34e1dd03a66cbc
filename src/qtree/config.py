"""
Engine configuration.

Values come from three layers, later layers winning:

    1. EngineConfig defaults
    2. an optional YAML file (top-level mapping, keys match field names)
    3. QTREE_* environment variables (e.g. QTREE_VALIDATION_CACHE_SIZE=100)

Configuration only tunes ambient behaviour (cache size, defaults for new
items). It never changes the semantics of a mutation or a validation pass.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

ENV_PREFIX = "QTREE_"


class ConfigError(ValueError):
    """Raised when configuration cannot be loaded or a value cannot be coerced."""
    pass


@dataclass(frozen=True)
class EngineConfig:
    """
    Tunable engine settings.

    Properties:
        validation_cache_size:
            Entries kept by ValidationCache before the oldest is evicted.
        default_language:
            Language code stamped on new questionnaires.
        option_system_prefix:
            Prefix for coding systems allocated to new option lists.
        attachment_max_size:
            Default max-size extension value (MB) for new attachment items.
    """

    validation_cache_size: int = 50
    default_language: str = "en-US"
    option_system_prefix: str = "urn:uuid:"
    attachment_max_size: float = 5.0


def _coerce(name: str, raw: Any, target: Any) -> Any:
    try:
        if isinstance(target, bool):
            if isinstance(raw, str):
                return raw.strip().lower() in {"1", "true", "yes", "on"}
            return bool(raw)
        if isinstance(target, int):
            return int(raw)
        if isinstance(target, float):
            return float(raw)
        return str(raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {name}: {raw!r} ({e})")


def _load_yaml_file(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            payload = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Config file {path} is not valid YAML: {e}")
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return payload


def load_config(
    path: Optional[str | Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> EngineConfig:
    """
    Build an EngineConfig from defaults, an optional YAML file and the environment.

    Raises:
        ConfigError: unknown keys in the file, unreadable file, bad values
    """
    config = EngineConfig()
    known = {f.name: getattr(config, f.name) for f in fields(EngineConfig)}
    overrides: Dict[str, Any] = {}

    if path is not None:
        payload = _load_yaml_file(Path(path))
        unknown = sorted(set(payload) - set(known))
        if unknown:
            raise ConfigError(f"Unknown config keys: {unknown}")
        for key, raw in payload.items():
            overrides[key] = _coerce(key, raw, known[key])

    env = os.environ if environ is None else environ
    for key, default in known.items():
        env_key = ENV_PREFIX + key.upper()
        if env_key in env:
            overrides[key] = _coerce(key, env[env_key], default)

    config = replace(config, **overrides)
    if config.validation_cache_size < 1:
        raise ConfigError("validation_cache_size must be at least 1")
    return config


_default_config: Optional[EngineConfig] = None


def get_config() -> EngineConfig:
    """Process-wide configuration, loaded lazily from the environment."""
    global _default_config
    if _default_config is None:
        _default_config = load_config()
    return _default_config
