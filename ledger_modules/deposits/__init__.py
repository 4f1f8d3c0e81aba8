"""Security deposits: unpaid reversal, forfeiture and refund."""

from ledger_modules.deposits.service import DepositService

__all__ = ["DepositService"]
