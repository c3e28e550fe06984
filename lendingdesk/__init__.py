"""LendingDesk - lending catalog service.

Tracks lendable items, their lending state and the ledger of issue/return
transactions, with role-based authorization on mutating operations.
"""

__version__ = "1.0.0"
