"""
Ledger module - non-negative balances per UUID.

Provides the asynchronous Ledger facade over a storage backend table.
"""

from posledger.ledger.ledger import Ledger

__all__ = [
    "Ledger",
]
