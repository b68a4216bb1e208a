"""
Requisition Workflow.

The lifecycle table consulted by the requisition state machine and the
purchase-order converter.  States are the members of the closed
``RequisitionStatus`` enum; the ``Workflow`` constructor validates the table
when this module is imported.
"""

from procurement_kernel.domain.workflow import Guard, Transition, Workflow
from procurement_kernel.logging_config import get_logger
from procurement_modules.requisitions.models import RequisitionStatus as S

logger = get_logger("modules.requisitions.workflows")


# -----------------------------------------------------------------------------
# Actions
# -----------------------------------------------------------------------------

SUBMIT = "submit"
APPROVE = "approve"
REJECT = "reject"
CONVERT = "convert"
CANCEL = "cancel"
EDIT = "edit"


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

HAS_VALID_ITEMS = Guard(
    name="has_valid_items",
    description="At least one item; every item valid; total matches lines",
)

NOT_YET_CONVERTED = Guard(
    name="not_yet_converted",
    description="No purchase order references the requisition",
)


REQUISITION_WORKFLOW = Workflow(
    name="requisition",
    description="Construction requisition lifecycle",
    initial_state=S.DRAFT,
    states=tuple(S),
    transitions=(
        Transition(S.DRAFT, S.PENDING_APPROVAL, action=SUBMIT, guard=HAS_VALID_ITEMS),
        Transition(S.PENDING_APPROVAL, S.APPROVED, action=APPROVE),
        Transition(S.PENDING_APPROVAL, S.REJECTED, action=REJECT),
        Transition(S.APPROVED, S.CONVERTED, action=CONVERT, guard=NOT_YET_CONVERTED),
        Transition(S.DRAFT, S.CANCELLED, action=CANCEL),
        Transition(S.PENDING_APPROVAL, S.CANCELLED, action=CANCEL),
        Transition(S.APPROVED, S.CANCELLED, action=CANCEL),
        Transition(S.DRAFT, S.DRAFT, action=EDIT),
        Transition(S.PENDING_APPROVAL, S.PENDING_APPROVAL, action=EDIT, guard=HAS_VALID_ITEMS),
    ),
    terminal_states=(S.REJECTED, S.CONVERTED, S.CANCELLED),
)

logger.debug(
    "requisition_workflow_registered",
    extra={
        "workflow_name": REQUISITION_WORKFLOW.name,
        "state_count": len(REQUISITION_WORKFLOW.states),
        "transition_count": len(REQUISITION_WORKFLOW.transitions),
        "initial_state": REQUISITION_WORKFLOW.initial_state,
    },
)
