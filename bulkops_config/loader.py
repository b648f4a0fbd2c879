"""
Configuration Loader (``bulkops_config.loader``).

Responsibility
--------------
Loads YAML files and parses them into the frozen dataclasses of
``bulkops_config.schema``.  Callers normally go through
``bulkops_config.load_config()`` rather than these helpers.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown section/key or bad value  -> ``ConfigurationError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from bulkops_kernel.exceptions import ConfigurationError

from bulkops_config.schema import (
    BulkOpsConfig,
    HistorySettings,
    OrchestratorSettings,
    PollerSettings,
    ProgressSettings,
    StatisticsSettings,
    ValidationSettings,
)

_SECTIONS: dict[str, type] = {
    "orchestrator": OrchestratorSettings,
    "progress": ProgressSettings,
    "history": HistorySettings,
    "statistics": StatisticsSettings,
    "poller": PollerSettings,
    "validation": ValidationSettings,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ConfigurationError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError("top level must be a mapping", path=str(path))
    return data


def merge_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively overlay ``override`` on ``base`` without mutating either."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def _coerce(section: str, name: str, expected: Any, value: Any) -> Any:
    # Annotations are strings because of ``from __future__ import annotations``.
    expected = str(expected)
    if value is None:
        if "None" in expected:
            return None
        raise ConfigurationError(f"{section}.{name} may not be null")
    if expected.startswith("tuple"):
        if not isinstance(value, (list, tuple)) or not value:
            raise ConfigurationError(f"{section}.{name} must be a non-empty list")
        return tuple(str(v) for v in value)
    if expected == "bool":
        if not isinstance(value, bool):
            raise ConfigurationError(f"{section}.{name} must be true or false")
        return value
    if expected == "int":
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigurationError(f"{section}.{name} must be an integer")
        return value
    if expected == "float":
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigurationError(f"{section}.{name} must be a number")
        return float(value)
    if expected.startswith("str"):
        return str(value)
    return value


def parse_section(section: str, data: dict[str, Any]) -> Any:
    """Parse one named section into its settings dataclass."""
    cls = _SECTIONS[section]
    if not isinstance(data, dict):
        raise ConfigurationError(f"section '{section}' must be a mapping")
    known = {f.name: f for f in fields(cls)}
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise ConfigurationError(f"unknown keys in '{section}': {unknown}")
    kwargs = {
        name: _coerce(section, name, known[name].type, value)
        for name, value in data.items()
    }
    return cls(**kwargs)


def _validate(config: BulkOpsConfig) -> None:
    if config.orchestrator.max_workers < 1:
        raise ConfigurationError("orchestrator.max_workers must be >= 1")
    if config.progress.callback_timeout_seconds <= 0:
        raise ConfigurationError("progress.callback_timeout_seconds must be > 0")
    if not 0 < config.progress.eta_smoothing <= 1:
        raise ConfigurationError("progress.eta_smoothing must be in (0, 1]")
    if config.history.max_entries < 1:
        raise ConfigurationError("history.max_entries must be >= 1")
    if not 1 <= config.history.default_page_size <= config.history.max_page_size:
        raise ConfigurationError(
            "history.default_page_size must be between 1 and max_page_size"
        )
    if config.statistics.max_age_seconds < 0:
        raise ConfigurationError("statistics.max_age_seconds must be >= 0")
    if config.poller.interval_seconds <= 0:
        raise ConfigurationError("poller.interval_seconds must be > 0")
    if config.validation.max_items_per_operation < 1:
        raise ConfigurationError("validation.max_items_per_operation must be >= 1")


def parse_config(data: dict[str, Any]) -> BulkOpsConfig:
    """
    Parse a full configuration mapping.

    Missing sections fall back to dataclass defaults.

    Raises:
        ConfigurationError: unknown section, unknown key, or invalid value.
    """
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ConfigurationError(f"unknown configuration sections: {unknown}")

    sections = {
        name: parse_section(name, data[name])
        for name in _SECTIONS
        if data.get(name) is not None
    }
    config = BulkOpsConfig(**sections, checksum=compute_checksum(data))
    _validate(config)
    return config


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of a configuration mapping."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
