"""Kernel services: infrastructure shared by the ledger stores."""

from procurement_kernel.services.sequence_service import SequenceCounter, SequenceService

__all__ = ["SequenceCounter", "SequenceService"]
