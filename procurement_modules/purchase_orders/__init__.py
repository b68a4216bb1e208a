"""
Purchase Orders (``procurement_modules.purchase_orders``).

Purchase-order DTOs, ORM models, the PO lifecycle table, the
``PurchaseOrderConverter`` (approved requisition -> issued PO, exactly once)
and ``PurchaseOrderService`` (reads, fulfil, cancel).
"""
