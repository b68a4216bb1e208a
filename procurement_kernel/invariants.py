"""
Kernel Invariants Contract.

These invariants are structural law for procurement documents. No
configuration value, role, or caller flag may switch them off.

This module exists solely to declare these invariants explicitly. The
enforcement is distributed across the totals engine, the requisition
workflow table, the purchase-order converter, the ledger stores, the
sequence service and the ORM immutability listeners.
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel."""

    TOTAL_MATCHES_LINES = "total_matches_lines"
    """A document total equals the sum of its round-half-up line totals.
    Enforced by domain.totals on every mutation and re-checked at
    conversion."""

    SUBMITTED_HAS_ITEMS = "submitted_has_items"
    """A requisition outside Draft always has at least one item. Enforced
    by the requisition state machine on submit and edit."""

    SINGLE_CONVERSION = "single_conversion"
    """At most one purchase order references a requisition. Enforced by
    the converter and by unique constraints in every ledger store."""

    FROZEN_SNAPSHOT = "frozen_snapshot"
    """Purchase-order items are copies taken at conversion and never
    change afterwards. Enforced by the converter (deep copy) and by
    db.immutability listeners."""

    NUMBER_UNIQUENESS = "number_uniqueness"
    """Requisition and PO numbers are allocated once from monotonic
    sequences and never reused. Enforced by SequenceService and the
    in-memory allocator."""

    OPTIMISTIC_VERSIONING = "optimistic_versioning"
    """Every write names the version it read; a stale write is rejected.
    Enforced by the ledger stores."""


# All invariants as a frozenset for programmatic checks.
ALL_KERNEL_INVARIANTS: frozenset[KernelInvariant] = frozenset(KernelInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "procurement_services",
    "procurement_config",
    "procurement_modules",
)
