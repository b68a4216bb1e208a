"""Ledger store: repository interface plus in-memory and SQL implementations."""

from procurement_modules.ledger.memory import InMemoryLedgerStore
from procurement_modules.ledger.store import LedgerStore, LedgerTransaction

__all__ = ["LedgerStore", "LedgerTransaction", "InMemoryLedgerStore"]
