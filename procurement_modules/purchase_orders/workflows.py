"""
Purchase Order Workflow.

Issued orders are either fulfilled or cancelled; both are terminal.
"""

from procurement_kernel.domain.workflow import Transition, Workflow
from procurement_kernel.logging_config import get_logger
from procurement_modules.purchase_orders.models import PurchaseOrderStatus as S

logger = get_logger("modules.purchase_orders.workflows")

FULFIL = "fulfil"
CANCEL = "cancel"

PURCHASE_ORDER_WORKFLOW = Workflow(
    name="purchase_order",
    description="Purchase order lifecycle",
    initial_state=S.ISSUED,
    states=tuple(S),
    transitions=(
        Transition(S.ISSUED, S.FULFILLED, action=FULFIL),
        Transition(S.ISSUED, S.CANCELLED, action=CANCEL),
    ),
    terminal_states=(S.FULFILLED, S.CANCELLED),
)

logger.debug(
    "purchase_order_workflow_registered",
    extra={
        "workflow_name": PURCHASE_ORDER_WORKFLOW.name,
        "state_count": len(PURCHASE_ORDER_WORKFLOW.states),
        "transition_count": len(PURCHASE_ORDER_WORKFLOW.transitions),
    },
)
