"""
Totals & validation engine.

Line totals are round-half-up at 2 dp; a document total is the sum of its
rounded line totals, never a rounding of the raw sum.
"""

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from procurement_kernel.domain.totals import (
    ItemDraft,
    collect_item_errors,
    compute_total,
    items_from_mappings,
    line_total,
    to_decimal,
    validate_items,
    verify_total,
)
from procurement_kernel.exceptions import ValidationError


prices = st.decimals(min_value=Decimal("0"), max_value=Decimal("100000"), places=4)
quantities = st.integers(min_value=1, max_value=10_000)
drafts = st.builds(
    ItemDraft,
    description=st.just("Timber"),
    quantity=quantities,
    unit=st.just("m"),
    unit_price=prices,
)


class TestLineTotal:

    def test_half_up_rounding(self):
        assert line_total(1, Decimal("0.005")) == Decimal("0.01")
        assert line_total(3, Decimal("0.335")) == Decimal("1.01")

    def test_two_places(self):
        assert line_total(3, Decimal("3.33")) == Decimal("9.99")
        assert str(line_total(2, Decimal("10"))) == "20.00"


class TestComputeTotal:

    def test_reference_example(self):
        items = [
            ItemDraft("Cement", 2, "bag", Decimal("10.00")),
            ItemDraft("Rebar", 3, "m", Decimal("3.33")),
        ]
        assert compute_total(items) == Decimal("29.99")

    def test_empty_is_zero(self):
        assert compute_total([]) == Decimal("0.00")

    def test_sum_of_rounded_lines(self):
        # 0.005 rounds up per line; summing raw would give 0.01 not 0.02
        items = [ItemDraft("A", 1, "u", Decimal("0.005"))] * 2
        assert compute_total(items) == Decimal("0.02")

    @given(st.lists(drafts, max_size=20))
    @settings(max_examples=200)
    def test_total_equals_sum_of_line_totals(self, items):
        assert compute_total(items) == sum(
            (line_total(i.quantity, i.unit_price) for i in items), Decimal("0.00")
        )

    @given(st.lists(drafts, max_size=20))
    def test_idempotent_and_order_independent(self, items):
        assert compute_total(items) == compute_total(items)
        assert compute_total(items) == compute_total(list(reversed(items)))

    @given(st.lists(drafts, max_size=10))
    def test_two_decimal_places(self, items):
        assert compute_total(items).as_tuple().exponent == -2


class TestValidateItems:

    def test_valid_items_pass(self):
        validate_items([ItemDraft("Cement", 1, "bag", Decimal("1.00"))], require_items=True)

    def test_empty_allowed_unless_required(self):
        validate_items([])
        with pytest.raises(ValidationError) as exc_info:
            validate_items([], require_items=True)
        assert exc_info.value.fields == ("items",)

    @pytest.mark.parametrize(
        "item, field",
        [
            (ItemDraft("Cement", 0, "bag", Decimal("1")), "quantity"),
            (ItemDraft("Cement", -1, "bag", Decimal("1")), "quantity"),
            (ItemDraft("Cement", 1.5, "bag", Decimal("1")), "quantity"),
            (ItemDraft("Cement", True, "bag", Decimal("1")), "quantity"),
            (ItemDraft("Cement", 1, "bag", Decimal("-0.01")), "unit_price"),
            (ItemDraft("Cement", 1, "bag", 1.5), "unit_price"),
            (ItemDraft("Cement", 1, "bag", Decimal("NaN")), "unit_price"),
            (ItemDraft("  ", 1, "bag", Decimal("1")), "description"),
            (ItemDraft("Cement", 1, "", Decimal("1")), "unit"),
        ],
    )
    def test_invalid_field_reported(self, item, field):
        with pytest.raises(ValidationError) as exc_info:
            validate_items([item])
        assert exc_info.value.fields == (field,)
        assert exc_info.value.errors[0].index == 0

    def test_every_problem_collected_with_index(self):
        errors = collect_item_errors([
            ItemDraft("Cement", 1, "bag", Decimal("1")),
            ItemDraft("", 0, "", Decimal("-1")),
        ])
        assert {e.field for e in errors} == {"quantity", "unit_price", "description", "unit"}
        assert all(e.index == 1 for e in errors)

    def test_zero_price_allowed(self):
        validate_items([ItemDraft("Sample", 1, "pc", Decimal("0"))])


class TestVerifyTotal:

    def test_matching_total(self):
        verify_total([ItemDraft("A", 2, "u", Decimal("1.25"))], Decimal("2.50"))

    def test_mismatch_raises(self):
        with pytest.raises(ValidationError) as exc_info:
            verify_total([ItemDraft("A", 2, "u", Decimal("1.25"))], Decimal("2.49"))
        assert exc_info.value.fields == ("total_amount",)


class TestBoundaryCoercion:

    def test_float_goes_through_str(self):
        assert to_decimal(3.33) == Decimal("3.33")

    def test_str_and_int(self):
        assert to_decimal(" 10.50 ") == Decimal("10.50")
        assert to_decimal(4) == Decimal(4)

    def test_garbage_left_for_validation(self):
        assert to_decimal("abc") == "abc"

    def test_items_from_mappings(self):
        drafts_ = items_from_mappings([
            {"description": "Rebar", "quantity": 3, "unit": "m", "unit_price": 3.33},
        ])
        assert drafts_[0].unit_price == Decimal("3.33")
        assert compute_total(drafts_) == Decimal("9.99")

    def test_non_mapping_row_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            items_from_mappings([{"description": "ok"}, "nope"])
        assert exc_info.value.errors[0].index == 1
