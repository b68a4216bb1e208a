"""
Requisitions (``procurement_modules.requisitions``).

Requisition DTOs, ORM models, the lifecycle table (``workflows``) and the
``RequisitionStateMachine`` that applies it.
"""
