"""
Configuration Schema (``procurement_config.schema``).

Typed, frozen dataclasses for every runtime setting.  Defaults are the
values the lifecycle engine runs with when no configuration file is given.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class NumberingConfig:
    """Document number formats; ``{year}`` and ``{seq}`` are substituted."""
    requisition_format: str = "REQ-{year}-{seq:04d}"
    purchase_order_format: str = "PO-{year}-{seq:05d}"


@dataclass(frozen=True)
class WorkflowConfig:
    """Lifecycle engine behaviour."""
    # Re-reads after a lost commit race during conversion.
    conversion_conflict_retries: int = 3


@dataclass(frozen=True)
class DispatchConfig:
    """Document rendering and notification delivery."""
    enabled: bool = True
    worker_count: int = 4
    max_attempts: int = 5
    backoff_multiplier: float = 1.0
    backoff_max: float = 60.0
    # Seconds the triggering operation waits before handing off.
    wait_timeout: float = 0.5


@dataclass(frozen=True)
class DatabaseConfig:
    """SQL ledger store connection."""
    url: str = "sqlite:///:memory:"
    echo: bool = False
    pool_size: int = 10


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    # "json" or "text"
    format: str = "json"


@dataclass(frozen=True)
class ProcurementConfig:
    """Aggregate configuration; ``checksum`` identifies the source data."""
    numbering: NumberingConfig = field(default_factory=NumberingConfig)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    checksum: str = ""
