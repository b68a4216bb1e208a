"""
Typed Exception Hierarchy for the Procurement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the lifecycle engine must react differently to each failure: a
validation error goes back to the user for correction, a version conflict is
re-read and retried, an authorization error is reported and never retried.
Parsing message strings for that decision is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        workflow.approve_requisition(actor, requisition_id)
    except InvalidStateError as e:
        api_response(code=e.code, status=e.current_status)
    except ConflictError:
        reload_and_offer_retry()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ProcurementError (base)
    |
    +-- ValidationError
    +-- NotFoundError
    +-- AuthorizationError
    +-- InvalidStateError
    |
    +-- ConcurrencyError
    |   +-- ConflictError
    |
    +-- TransactionError
    |   +-- StoreUnavailableError
    |   +-- SequenceAllocationError
    |
    +-- ImmutabilityViolationError
    |
    +-- DispatchError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                        | When Raised
----------------------------|-------------------------------------------------
VALIDATION_FAILED           | Malformed or out-of-range input (never retried)
NOT_FOUND                   | Unknown id
NOT_AUTHORIZED              | Actor role insufficient (no partial effects)
INVALID_STATE               | Transition not legal from current status
VERSION_CONFLICT            | Optimistic version mismatch (re-read, retry)
STORE_UNAVAILABLE           | Persistence layer unreachable (nothing written)
SEQUENCE_ALLOCATION_FAILED  | Number allocator failed (nothing written)
IMMUTABILITY_VIOLATION      | Attempt to change a frozen purchase-order record
DISPATCH_FAILED             | Renderer/notifier failure (logged, retried, never
                            | surfaced as a failure of the transition)

===============================================================================
"""

from dataclasses import dataclass


class ProcurementError(Exception):
    """
    Base exception for all procurement kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PROCUREMENT_ERROR"


@dataclass(frozen=True)
class FieldError:
    """One field-level validation problem.

    ``index`` is the position of the offending line item, or None for
    header-level fields.
    """

    field: str
    message: str
    index: int | None = None

    def __str__(self) -> str:
        if self.index is None:
            return f"{self.field}: {self.message}"
        return f"items[{self.index}].{self.field}: {self.message}"


class ValidationError(ProcurementError):
    """Input failed validation. Recoverable only by correcting the input."""

    code: str = "VALIDATION_FAILED"

    def __init__(self, errors: "list[FieldError] | tuple[FieldError, ...]"):
        self.errors = tuple(errors)
        summary = "; ".join(str(e) for e in self.errors) or "invalid input"
        super().__init__(f"Validation failed: {summary}")

    @classmethod
    def single(cls, field: str, message: str, index: int | None = None) -> "ValidationError":
        return cls([FieldError(field=field, message=message, index=index)])

    @property
    def fields(self) -> tuple[str, ...]:
        return tuple(e.field for e in self.errors)


class NotFoundError(ProcurementError):
    """Entity with the given id does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class AuthorizationError(ProcurementError):
    """Actor's role does not permit the requested action."""

    code: str = "NOT_AUTHORIZED"

    def __init__(self, actor_id: str, role: str, action: str, reason: str = ""):
        self.actor_id = actor_id
        self.role = role
        self.action = action
        self.reason = reason
        message = f"Actor {actor_id} ({role}) may not perform '{action}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class InvalidStateError(ProcurementError):
    """
    Transition is not legal from the entity's current status.

    Carries ``current_status`` so the caller can decide whether to re-read
    and retry.
    """

    code: str = "INVALID_STATE"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_status: str,
        action: str,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} {entity_type} {entity_id} "
            f"in status '{current_status}'"
        )


# Concurrency-related exceptions


class ConcurrencyError(ProcurementError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConflictError(ConcurrencyError):
    """
    Optimistic version conflict.

    The stored row advanced past the version the caller read. The caller
    must re-read and may retry the same intent; nothing was written.
    """

    code: str = "VERSION_CONFLICT"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
        reason: str = "",
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        self.reason = reason
        detail = reason or "entity was modified by another transaction"
        super().__init__(
            f"Version conflict on {entity_type} {entity_id}: {detail}"
        )


# Transaction-related exceptions


class TransactionError(ProcurementError):
    """Base exception for aborted transactions. No partial writes remain."""

    code: str = "TRANSACTION_ERROR"


class StoreUnavailableError(TransactionError):
    """The ledger store could not be reached or failed mid-transaction."""

    code: str = "STORE_UNAVAILABLE"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Ledger store unavailable: {reason}")


class SequenceAllocationError(TransactionError):
    """The number allocator failed to produce a value."""

    code: str = "SEQUENCE_ALLOCATION_FAILED"

    def __init__(self, sequence_name: str, reason: str):
        self.sequence_name = sequence_name
        self.reason = reason
        super().__init__(
            f"Could not allocate next value of sequence '{sequence_name}': {reason}"
        )


# Immutability


class ImmutabilityViolationError(ProcurementError):
    """Attempted to modify or delete a frozen purchase-order record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Dispatch


class DispatchError(ProcurementError):
    """
    Renderer or notifier failure.

    Raised and handled inside the dispatch service only. It is logged and
    retried, and never surfaces as a failure of the state transition that
    triggered the dispatch.
    """

    code: str = "DISPATCH_FAILED"

    def __init__(self, task_id: str, stage: str, reason: str):
        self.task_id = task_id
        self.stage = stage
        self.reason = reason
        super().__init__(f"Dispatch task {task_id} failed at {stage}: {reason}")
