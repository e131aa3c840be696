"""
Envelope Ledger - Source Package

A household envelope-budgeting ledger: named budget envelopes with monthly
allocations, an append-only transaction log, fixed-price products and a
once-per-month rollover.

DESIGN PRINCIPLES:
1. Balances only change through the transaction ledger
2. Every mutation is one atomic unit against the store
3. Overdraft is a signal, never a rejection
4. Every mutation is auditable
5. No presentation concerns - callers get structured results
"""

__version__ = "1.0.0"
__author__ = "Envelope Ledger Team"
