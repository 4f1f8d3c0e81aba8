"""
Ledger Kernel

Double-entry bookkeeping core for student-residence billing:
- Account registry (chart of accounts as the single source of truth)
- Append-only store of balanced entry-sets
- Posting engine with hard balance validation, reversal and void
- Read-only aggregation over posted lines (no stored balances)
"""

__version__ = "0.1.0"
