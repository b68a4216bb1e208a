"""
Procurement modules: the document nouns, their lifecycles and their storage.

- master_data: projects, suppliers and supplier catalogs
- requisitions: requisition DTOs, ORM, workflow table and state machine
- purchase_orders: PO DTOs, ORM, workflow table, converter and status service
- ledger: the LedgerStore repository interface and its implementations
"""
