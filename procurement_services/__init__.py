"""
Procurement services: the outer layer callers talk to.

- rbac_authority: role matrix and authorization checks
- approval_workflow: ``ProcurementWorkflow``, the public lifecycle facade
- dispatch: document rendering and notification delivery with retries
- reporting: read-only expenditure and status reports
"""
