"""Rent accrual: monthly schedule runs and lease-start charges."""

from ledger_modules.accruals.models import (
    AccrualRunResult,
    AgreementProvider,
    BillingAgreement,
    SkippedItem,
    StaticAgreementProvider,
)
from ledger_modules.accruals.service import AccrualScheduler, SkipReason

__all__ = [
    "AccrualRunResult",
    "AccrualScheduler",
    "AgreementProvider",
    "BillingAgreement",
    "SkipReason",
    "SkippedItem",
    "StaticAgreementProvider",
]
