"""Expense accrual and payment, direct expenses and other income."""

from ledger_modules.expenses.service import ExpenseService

__all__ = ["ExpenseService"]
