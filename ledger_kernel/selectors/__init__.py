"""Read-only query layer: the only code path that aggregates ledger lines."""

from ledger_kernel.selectors.ledger_selector import (
    AccountTotals,
    LedgerLineView,
    LedgerSelector,
    SourceTotals,
)

__all__ = [
    "AccountTotals",
    "LedgerLineView",
    "LedgerSelector",
    "SourceTotals",
]
