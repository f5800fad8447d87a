"""
Ledger Sync - Source Package

Keeps a user's bank account balances, budgets and savings goals consistent
with their incomes and expenses, even when transactions arrive both from
local user actions and from a remote real-time store.

DESIGN PRINCIPLES:
1. Aggregates are derived, never typed in by hand
2. Validate before mutating, revert when persistence fails
3. The remote snapshot is the final word on a collection
4. Every mutation is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Ledger Sync Team"
