"""Kernel write services: registry, entry store, posting engine, debtor locks, sequences."""

from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.debtor_lock import (
    DebtorLockRegistry,
    serialize_debtor,
    shared_registry,
)
from ledger_kernel.services.entry_store import LedgerEntryStore, OrphanCleanupReport
from ledger_kernel.services.posting_engine import PostingEngine
from ledger_kernel.services.sequence_service import SequenceService

__all__ = [
    "AccountRegistry",
    "DebtorLockRegistry",
    "LedgerEntryStore",
    "OrphanCleanupReport",
    "PostingEngine",
    "SequenceService",
    "serialize_debtor",
    "shared_registry",
]
