"""Payment allocation, deferred-income recognition and negotiated discounts."""

from ledger_modules.payments.models import (
    AllocationLine,
    AllocationResult,
    OutstandingPeriod,
    Payment,
    money_amount,
)
from ledger_modules.payments.service import PaymentAllocator

__all__ = [
    "AllocationLine",
    "AllocationResult",
    "OutstandingPeriod",
    "Payment",
    "PaymentAllocator",
    "money_amount",
]
