"""ORM models for the ledger kernel."""

from ledger_kernel.models.account import Account, AccountType, NormalBalance
from ledger_kernel.models.allocation import SettlementAllocation
from ledger_kernel.models.ledger_entry import (
    EntrySource,
    EntryStatus,
    LedgerEntrySet,
    LedgerLine,
)
from ledger_kernel.models.sequence import LEDGER_ENTRY_SEQUENCE, SequenceCounter

__all__ = [
    "Account",
    "AccountType",
    "EntrySource",
    "EntryStatus",
    "LedgerEntrySet",
    "LedgerLine",
    "LEDGER_ENTRY_SEQUENCE",
    "NormalBalance",
    "SequenceCounter",
    "SettlementAllocation",
]
