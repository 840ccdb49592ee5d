"""
Configuration management and loading.

Loads governor, ledger and audit trail settings from YAML with strict
validation. Every section is optional; omitted values keep their defaults.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ai_call_governor.core.audit_trail import (
    AUDIT_LOG_STORAGE_KEY,
    DEFAULT_DOWNLOAD_THRESHOLD_KB,
    DEFAULT_LOG_LIMIT,
)
from ai_call_governor.core.fallback import FallbackChain
from ai_call_governor.core.governor import GovernorConfig
from ai_call_governor.core.ledger import DEFAULT_CAPACITY
from ai_call_governor.storage.db import DEFAULT_DB_PATH


@dataclass(frozen=True)
class LedgerConfig:
    """In-memory ledger settings."""
    capacity: int = DEFAULT_CAPACITY

    def __post_init__(self):
        if self.capacity < 1:
            raise ValueError("capacity must be >= 1")


@dataclass(frozen=True)
class AuditConfig:
    """Audit trail persistence and rotation settings."""
    log_limit: int = DEFAULT_LOG_LIMIT
    download_threshold_kb: float = DEFAULT_DOWNLOAD_THRESHOLD_KB
    storage_key: str = AUDIT_LOG_STORAGE_KEY
    export_dir: str = "."
    db_path: str = DEFAULT_DB_PATH
    flush_interval_s: float = 1.0

    def __post_init__(self):
        """Validate audit values."""
        if self.log_limit < 1:
            raise ValueError("log_limit must be >= 1")
        if self.download_threshold_kb < 0:
            raise ValueError("download_threshold_kb must be >= 0")
        if not self.storage_key:
            raise ValueError("storage_key cannot be empty")
        if self.flush_interval_s < 0:
            raise ValueError("flush_interval_s must be >= 0")


@dataclass(frozen=True)
class AppConfig:
    """Complete configuration."""
    governor: GovernorConfig = field(default_factory=GovernorConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)


_GOVERNOR_KEYS = {
    'max_retries': int,
    'initial_backoff_ms': int,
    'max_concurrent_requests': int,
    'poll_interval_ms': int,
    'request_timeout_s': (int, float, type(None)),
}
_LEDGER_KEYS = {'capacity': int}
_AUDIT_KEYS = {
    'log_limit': int,
    'download_threshold_kb': (int, float),
    'storage_key': str,
    'export_dir': str,
    'db_path': str,
    'flush_interval_s': (int, float),
}


def load_config(path: str) -> AppConfig:
    """Load and validate configuration from a YAML file.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated AppConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'governor', 'fallbacks', 'ledger', 'audit'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    governor_values = _parse_section(raw_config, 'governor', _GOVERNOR_KEYS)
    if 'fallbacks' in raw_config:
        governor_values['fallback_chain'] = _parse_fallbacks(raw_config['fallbacks'])

    return AppConfig(
        governor=GovernorConfig(**governor_values),
        ledger=LedgerConfig(**_parse_section(raw_config, 'ledger', _LEDGER_KEYS)),
        audit=AuditConfig(**_parse_section(raw_config, 'audit', _AUDIT_KEYS)),
    )


def _parse_section(raw_config: Dict, name: str, schema: Dict[str, Any]) -> Dict[str, Any]:
    """Validate one section's keys and value types.

    Args:
        raw_config: Whole configuration mapping
        name: Section name
        schema: Allowed keys mapped to accepted types

    Returns:
        The section's values, ready to pass as keyword arguments

    Raises:
        ValueError: If the section is invalid
    """
    data = raw_config.get(name)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")

    unknown_keys = set(data.keys()) - set(schema)
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")

    for key, value in data.items():
        expected = schema[key]
        if isinstance(value, bool) or not isinstance(value, expected):
            raise ValueError(f"'{key}' in {name} has invalid type {type(value).__name__}")

    return dict(data)


def _parse_fallbacks(data: Any) -> FallbackChain:
    """Parse the model fallback mapping.

    Raises:
        ValueError: If the mapping is invalid or cyclic
    """
    if not isinstance(data, dict):
        raise ValueError("'fallbacks' must be a dictionary")

    mapping: Dict[str, Optional[str]] = {}
    for model, fallback in data.items():
        if not isinstance(model, str) or not model:
            raise ValueError("fallback model names must be non-empty strings")
        if fallback is not None and (not isinstance(fallback, str) or not fallback):
            raise ValueError(f"fallback for '{model}' must be a model name or null")
        if fallback == model:
            raise ValueError(f"model '{model}' cannot fall back to itself")
        mapping[model] = fallback

    return FallbackChain(mapping)
