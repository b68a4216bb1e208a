"""
procurement_config -- runtime configuration entry point.

``get_active_config()`` returns the configuration named by the
``PROCUREMENT_CONFIG`` environment variable (a YAML file path), or the
defaults when it is unset.  Each load emits a ``procurement_config_loaded``
log entry carrying the checksum so a run can be tied to its configuration.
"""

from __future__ import annotations

import os

from procurement_config.loader import compute_checksum, config_from_dict, load_config
from procurement_config.schema import (
    DatabaseConfig,
    DispatchConfig,
    LoggingConfig,
    NumberingConfig,
    ProcurementConfig,
    WorkflowConfig,
)
from procurement_kernel.logging_config import get_logger

logger = get_logger("config")

CONFIG_ENV_VAR = "PROCUREMENT_CONFIG"


def get_active_config() -> ProcurementConfig:
    """The configuration for this process: env-named YAML file or defaults."""
    path = os.environ.get(CONFIG_ENV_VAR)
    if path:
        config = load_config(path)
        source = path
    else:
        config = config_from_dict({})
        source = "defaults"
    logger.info(
        "procurement_config_loaded",
        extra={"source": source, "checksum": config.checksum},
    )
    return config


__all__ = [
    "CONFIG_ENV_VAR",
    "get_active_config",
    "load_config",
    "config_from_dict",
    "compute_checksum",
    "ProcurementConfig",
    "NumberingConfig",
    "WorkflowConfig",
    "DispatchConfig",
    "DatabaseConfig",
    "LoggingConfig",
]
