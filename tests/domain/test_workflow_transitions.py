"""
Requisition and purchase-order transition tables.

The tables are validated when imported; these tests pin the expected shape
and show that malformed tables are rejected at construction.
"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from procurement_kernel.domain.workflow import Transition, Workflow
from procurement_modules.purchase_orders.models import PurchaseOrderStatus
from procurement_modules.purchase_orders.workflows import PURCHASE_ORDER_WORKFLOW
from procurement_modules.requisitions.models import RequisitionStatus as S
from procurement_modules.requisitions.workflows import (
    APPROVE,
    CANCEL,
    CONVERT,
    EDIT,
    REJECT,
    REQUISITION_WORKFLOW,
    SUBMIT,
)

ACTIONS = (SUBMIT, APPROVE, REJECT, CONVERT, CANCEL, EDIT)


class TestRequisitionWorkflow:

    def test_every_status_reachable(self):
        assert REQUISITION_WORKFLOW.reachable_states() == set(S)

    @pytest.mark.parametrize("terminal", [S.REJECTED, S.CONVERTED, S.CANCELLED])
    def test_terminal_states_have_no_actions(self, terminal):
        assert REQUISITION_WORKFLOW.is_terminal(terminal)
        assert REQUISITION_WORKFLOW.allowed_actions(terminal) == ()

    def test_expected_transitions(self):
        expected = {
            (S.DRAFT, SUBMIT): S.PENDING_APPROVAL,
            (S.PENDING_APPROVAL, APPROVE): S.APPROVED,
            (S.PENDING_APPROVAL, REJECT): S.REJECTED,
            (S.APPROVED, CONVERT): S.CONVERTED,
            (S.DRAFT, CANCEL): S.CANCELLED,
            (S.PENDING_APPROVAL, CANCEL): S.CANCELLED,
            (S.APPROVED, CANCEL): S.CANCELLED,
            (S.DRAFT, EDIT): S.DRAFT,
            (S.PENDING_APPROVAL, EDIT): S.PENDING_APPROVAL,
        }
        for (from_state, action), to_state in expected.items():
            transition = REQUISITION_WORKFLOW.find_transition(from_state, action)
            assert transition is not None, (from_state, action)
            assert transition.to_state == to_state
        assert len(REQUISITION_WORKFLOW.transitions) == len(expected)

    def test_edit_is_self_transition(self):
        assert REQUISITION_WORKFLOW.find_transition(S.DRAFT, EDIT).is_self_transition
        assert not REQUISITION_WORKFLOW.find_transition(S.DRAFT, SUBMIT).is_self_transition

    def test_cannot_edit_after_approval(self):
        assert REQUISITION_WORKFLOW.find_transition(S.APPROVED, EDIT) is None

    @given(st.sampled_from(list(S)), st.sampled_from(ACTIONS))
    def test_lookup_is_deterministic(self, status, action):
        matches = [
            t for t in REQUISITION_WORKFLOW.transitions
            if t.from_state == status and t.action == action
        ]
        assert len(matches) <= 1
        found = REQUISITION_WORKFLOW.find_transition(status, action)
        assert found == (matches[0] if matches else None)

    def test_lookup_accepts_plain_status_values(self):
        assert REQUISITION_WORKFLOW.find_transition("draft", SUBMIT) is not None


class TestPurchaseOrderWorkflow:

    def test_shape(self):
        assert PURCHASE_ORDER_WORKFLOW.initial_state == PurchaseOrderStatus.ISSUED
        assert set(PURCHASE_ORDER_WORKFLOW.allowed_actions(PurchaseOrderStatus.ISSUED)) == {
            "fulfil", "cancel"
        }
        assert PURCHASE_ORDER_WORKFLOW.allowed_actions(PurchaseOrderStatus.FULFILLED) == ()


class TestMalformedTablesRejected:

    def _workflow(self, **overrides):
        params = dict(
            name="t",
            description="",
            initial_state="a",
            states=("a", "b"),
            transitions=(Transition("a", "b", action="go"),),
            terminal_states=("b",),
        )
        params.update(overrides)
        return Workflow(**params)

    def test_valid_table(self):
        assert self._workflow().reachable_states() == {"a", "b"}

    def test_unknown_initial_state(self):
        with pytest.raises(ValueError, match="initial state"):
            self._workflow(initial_state="z")

    def test_transition_to_unknown_state(self):
        with pytest.raises(ValueError, match="unknown state"):
            self._workflow(transitions=(Transition("a", "z", action="go"),))

    def test_terminal_with_outgoing_transition(self):
        with pytest.raises(ValueError, match="terminal state"):
            self._workflow(
                transitions=(
                    Transition("a", "b", action="go"),
                    Transition("b", "a", action="back"),
                ),
            )

    def test_duplicate_action(self):
        with pytest.raises(ValueError, match="duplicate transition"):
            self._workflow(
                states=("a", "b", "c"),
                transitions=(
                    Transition("a", "b", action="go"),
                    Transition("a", "c", action="go"),
                ),
                terminal_states=("b", "c"),
            )

    def test_unreachable_state(self):
        with pytest.raises(ValueError, match="unreachable"):
            self._workflow(
                states=("a", "b", "c"),
                terminal_states=("b", "c"),
            )

    def test_undeclared_dead_end(self):
        with pytest.raises(ValueError, match="exactly the terminal states"):
            self._workflow(terminal_states=("a",), transitions=())
