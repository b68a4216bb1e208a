"""
Totals & Validation Engine -- pure computation over line items.

Responsibility:
    Validates requisition/purchase-order line items and computes line and
    document totals.  Every mutation path (create, edit, submit, convert)
    calls into this module; nothing else computes money.

Architecture position:
    Kernel > Domain -- pure functions, zero I/O, no clock, no store.

Invariants enforced:
    - Line total = round-half-up(quantity x unit_price, 2 dp), computed from
      the full-precision product.
    - Document total = sum of rounded line totals (not a rounded grand
      total), so the document adds up line by line as displayed.
    - Submitted documents carry >= 1 item; quantity is an int > 0; unit
      price is a Decimal >= 0; description and unit are non-empty.

Failure modes:
    - ValidationError carrying one FieldError per problem, each tagged with
      the item's index.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Protocol

from procurement_kernel.db.types import ZERO_MONEY, round_money
from procurement_kernel.exceptions import FieldError, ValidationError


class PricedLine(Protocol):
    """Anything with the four line-item fields (drafts, stored items, PO items)."""

    description: str
    quantity: int
    unit: str
    unit_price: Decimal


@dataclass(frozen=True)
class ItemDraft:
    """A line item as supplied by a caller, before it is stored."""

    description: str
    quantity: int
    unit: str
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return line_total(self.quantity, self.unit_price)

    @classmethod
    def from_mapping(cls, data: Mapping) -> ItemDraft:
        """Build a draft from a plain mapping; prices go through to_decimal."""
        return cls(
            description=data.get("description", ""),
            quantity=data.get("quantity"),
            unit=data.get("unit", ""),
            unit_price=to_decimal(data.get("unit_price")),
        )


def to_decimal(value) -> Decimal:
    """
    Coerce a boundary value to Decimal.

    str, int and Decimal convert exactly; floats go through ``str`` so that
    ``3.33`` becomes ``Decimal("3.33")`` rather than its binary expansion.
    Anything else is returned unchanged for validation to reject.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            return value
    return value


def items_from_mappings(rows: Iterable[Mapping]) -> tuple[ItemDraft, ...]:
    """Build drafts from mappings; structurally broken rows raise ValidationError."""
    drafts: list[ItemDraft] = []
    errors: list[FieldError] = []
    for index, row in enumerate(rows):
        if not isinstance(row, Mapping):
            errors.append(FieldError("item", "must be a mapping", index))
            continue
        drafts.append(ItemDraft.from_mapping(row))
    if errors:
        raise ValidationError(errors)
    return tuple(drafts)


def line_total(quantity: int, unit_price: Decimal) -> Decimal:
    """Full-precision multiply, then round-half-up to 2 dp."""
    return round_money(Decimal(quantity) * unit_price)


def compute_total(items: Iterable[PricedLine]) -> Decimal:
    """
    Sum of per-line rounded totals.

    Deterministic and idempotent; ``Decimal("0.00")`` for no items.
    """
    total = ZERO_MONEY
    for item in items:
        total += line_total(item.quantity, item.unit_price)
    return round_money(total)


def collect_item_errors(items: Sequence[PricedLine]) -> tuple[FieldError, ...]:
    """Every field-level problem in ``items``, in item order."""
    errors: list[FieldError] = []
    for index, item in enumerate(items):
        quantity = item.quantity
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            errors.append(FieldError("quantity", "must be an integer", index))
        elif quantity <= 0:
            errors.append(FieldError("quantity", "must be greater than zero", index))

        price = item.unit_price
        if not isinstance(price, Decimal) or not price.is_finite():
            errors.append(FieldError("unit_price", "must be a decimal amount", index))
        elif price < 0:
            errors.append(FieldError("unit_price", "must not be negative", index))

        if not isinstance(item.description, str) or not item.description.strip():
            errors.append(FieldError("description", "must not be empty", index))
        if not isinstance(item.unit, str) or not item.unit.strip():
            errors.append(FieldError("unit", "must not be empty", index))
    return tuple(errors)


def validate_items(items: Sequence[PricedLine], require_items: bool = False) -> None:
    """Raise ValidationError listing every problem; return None when valid."""
    errors = list(collect_item_errors(items))
    if require_items and not items:
        errors.insert(0, FieldError("items", "at least one item is required"))
    if errors:
        raise ValidationError(errors)


def verify_total(items: Sequence[PricedLine], recorded_total: Decimal) -> None:
    """Raise ValidationError when ``recorded_total`` is stale or mismatched."""
    expected = compute_total(items)
    if recorded_total != expected:
        raise ValidationError.single(
            "total_amount",
            f"recorded total {recorded_total} does not match line items ({expected})",
        )
