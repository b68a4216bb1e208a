"""
Configuration Loader (``procurement_config.loader``).

Responsibility
--------------
Parses a YAML document (or an equivalent dict) into a typed
``ProcurementConfig``.  Runtime callers use
``procurement_config.get_active_config()``.

Invariants enforced
-------------------
* Unknown sections or keys raise ``ValueError``; a typo never silently
  falls back to a default.
* Values are checked for type and range before the frozen dataclasses are
  built.
* ``compute_checksum`` produces a deterministic SHA-256 of the canonical
  JSON form, so two loads of the same data carry the same checksum.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key or bad value  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from procurement_config.schema import (
    DatabaseConfig,
    DispatchConfig,
    LoggingConfig,
    NumberingConfig,
    ProcurementConfig,
    WorkflowConfig,
)

_SECTIONS: dict[str, type] = {
    "numbering": NumberingConfig,
    "workflow": WorkflowConfig,
    "dispatch": DispatchConfig,
    "database": DatabaseConfig,
    "logging": LoggingConfig,
}

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
_LOG_FORMATS = frozenset({"json", "text"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file; an empty file yields ``{}``."""
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _parse_section(name: str, raw: Any) -> Any:
    cls = _SECTIONS[name]
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ValueError(f"config section '{name}' must be a mapping")

    known = {f.name: f for f in fields(cls)}
    unknown = sorted(set(raw) - set(known))
    if unknown:
        raise ValueError(f"config section '{name}': unknown keys {unknown}")

    values: dict[str, Any] = {}
    defaults = cls()
    for key, value in raw.items():
        expected = type(getattr(defaults, key))
        if expected is float and isinstance(value, int) and not isinstance(value, bool):
            value = float(value)
        if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
            raise ValueError(
                f"config {name}.{key}: expected {expected.__name__}, "
                f"got {type(value).__name__}"
            )
        values[key] = value
    return cls(**values)


def _validate(config: ProcurementConfig) -> None:
    if config.workflow.conversion_conflict_retries < 0:
        raise ValueError("workflow.conversion_conflict_retries must be >= 0")
    if config.dispatch.worker_count < 1:
        raise ValueError("dispatch.worker_count must be >= 1")
    if config.dispatch.max_attempts < 1:
        raise ValueError("dispatch.max_attempts must be >= 1")
    if config.dispatch.wait_timeout < 0:
        raise ValueError("dispatch.wait_timeout must be >= 0")
    if config.dispatch.backoff_multiplier < 0 or config.dispatch.backoff_max < 0:
        raise ValueError("dispatch backoff values must be >= 0")
    if config.logging.level.upper() not in _LOG_LEVELS:
        raise ValueError(f"logging.level must be one of {sorted(_LOG_LEVELS)}")
    if config.logging.format not in _LOG_FORMATS:
        raise ValueError(f"logging.format must be one of {sorted(_LOG_FORMATS)}")
    for key in ("requisition_format", "purchase_order_format"):
        fmt = getattr(config.numbering, key)
        try:
            fmt.format(year=2024, seq=1)
        except (KeyError, IndexError, ValueError) as exc:
            raise ValueError(f"numbering.{key} is not a valid format: {exc}") from exc


def config_from_dict(data: dict[str, Any]) -> ProcurementConfig:
    """Build a validated ``ProcurementConfig`` from a plain mapping."""
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ValueError(f"unknown config sections {unknown}")
    sections = {name: _parse_section(name, data.get(name)) for name in _SECTIONS}
    config = ProcurementConfig(**sections, checksum=compute_checksum(data))
    _validate(config)
    return config


def load_config(path: Path | str) -> ProcurementConfig:
    """Load and validate a YAML configuration file."""
    return config_from_dict(load_yaml_file(Path(path)))
