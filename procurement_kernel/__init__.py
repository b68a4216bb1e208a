"""
Procurement Kernel

The lifecycle core for construction procurement documents:
- Typed errors with machine-readable codes
- Structured JSON logging
- Pure totals and validation over line items
- Closed-enum workflow tables
- Monotonic sequence allocation
- Append-only purchase-order persistence rules
"""

__version__ = "0.1.0"
