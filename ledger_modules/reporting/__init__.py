"""Balances, statements and debtor aging over the posted ledger."""

from ledger_modules.reporting.models import (
    AccountingBasis,
    AgingReport,
    BalanceSheetReport,
    CashFlowReport,
    DebtorAging,
    GeneralLedgerReport,
    ImbalanceDetected,
    IncomeStatementReport,
    StatementKind,
    TrialBalanceReport,
)
from ledger_modules.reporting.service import ReportingService
from ledger_modules.reporting.statements import render_to_dict

__all__ = [
    "AccountingBasis",
    "AgingReport",
    "BalanceSheetReport",
    "CashFlowReport",
    "DebtorAging",
    "GeneralLedgerReport",
    "ImbalanceDetected",
    "IncomeStatementReport",
    "ReportingService",
    "StatementKind",
    "TrialBalanceReport",
    "render_to_dict",
]
