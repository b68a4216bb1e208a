"""Pure domain layer: clock, actor, workflow tables, totals engine."""

from procurement_kernel.domain.actor import APPROVER_ROLES, Actor, Role
from procurement_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from procurement_kernel.domain.totals import (
    ItemDraft,
    collect_item_errors,
    compute_total,
    line_total,
    to_decimal,
    validate_items,
    verify_total,
)
from procurement_kernel.domain.workflow import Guard, Transition, Workflow

__all__ = [
    "Actor",
    "Role",
    "APPROVER_ROLES",
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "ItemDraft",
    "line_total",
    "compute_total",
    "collect_item_errors",
    "validate_items",
    "verify_total",
    "to_decimal",
    "Guard",
    "Transition",
    "Workflow",
]
