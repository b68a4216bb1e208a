"""
Module ORM Registry (``procurement_modules._orm_registry``).

Responsibility
--------------
Import every module-level ORM model so that ``Base.metadata`` contains
their tables before ``create_tables()`` runs.  ``create_all_tables()`` is the
one orchestration function for scripts, the SQL ledger store and tests.

Architecture position
---------------------
**Modules layer** -- utility.  Imports sibling ``*.orm`` modules and
``procurement_kernel.db.engine`` (allowed: modules -> kernel).
"""


def import_all_orm_models() -> None:
    """Import the kernel sequence table and every ``*.orm`` module. Idempotent."""
    # fmt: off
    import procurement_kernel.services.sequence_service  # noqa: F401
    import procurement_modules.master_data.orm  # noqa: F401
    import procurement_modules.requisitions.orm  # noqa: F401
    import procurement_modules.purchase_orders.orm  # noqa: F401
    # fmt: on


def create_all_tables() -> None:
    """Register every ORM model, then create all tables."""
    from procurement_kernel.db.engine import create_tables

    import_all_orm_models()
    create_tables()
