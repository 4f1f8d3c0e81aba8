"""
Typed Exception Hierarchy for the Ledger Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (payment intake, reporting, CLI) must react to ledger failures by
type, not by parsing messages.  Every exception therefore:
  1. Has a TYPED class (catch by type, not message)
  2. Has a CODE attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (not just a message string)

Example:
    try:
        engine.post(draft, acting_user="finance-01")
    except UnbalancedEntryError as e:
        api_response(code=e.code, debit_total=e.debit_total,
                     credit_total=e.credit_total, diff=e.diff)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerKernelError (base)
    |
    +-- AccountError
    |   +-- UnknownAccountError
    |   +-- DuplicateAccountError
    |   +-- AccountInactiveError
    |
    +-- PostingError
    |   +-- UnbalancedEntryError
    |   +-- InvalidLineError
    |   +-- InvalidEntryError
    |
    +-- EntryError
    |   +-- NotFoundError
    |   +-- AlreadyReversedError
    |   +-- EntryNotPostedError
    |   +-- EntrySettledError
    |
    +-- AllocationError
    |   +-- NoOutstandingBalanceError
    |   +-- InvalidPaymentError
    |   +-- InsufficientDepositError
    |   +-- DebtorBusyError
    |
    +-- OperationCancelledError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                      | When Raised
----------------|---------------------------|-------------------------------------
Account         | UNKNOWN_ACCOUNT           | Line or lookup references a code
                |                           | that is not in the registry
                | DUPLICATE_ACCOUNT         | Code re-registered with another type
                | ACCOUNT_INACTIVE          | Posting to a deactivated account
----------------|---------------------------|-------------------------------------
Posting         | UNBALANCED_ENTRY          | Debits != Credits (beyond tolerance)
                | INVALID_LINE              | Negative amount, both sides set, or
                |                           | neither side set
                | INVALID_ENTRY             | < 2 lines, bad date, unknown source
----------------|---------------------------|-------------------------------------
Entry           | NOT_FOUND                 | Entry id does not exist
                | ALREADY_REVERSED          | A reversal already references entry
                | ENTRY_NOT_POSTED          | Operation needs a posted entry
                | ENTRY_SETTLED             | Void blocked by payment allocation
----------------|---------------------------|-------------------------------------
Allocation      | NO_OUTSTANDING_BALANCE    | Targeted month has nothing owing
                | INVALID_PAYMENT           | Non-positive or sub-cent amount, bad
                |                           | period key
                | INSUFFICIENT_DEPOSIT      | Release larger than deposit held
                | DEBTOR_BUSY               | Debtor lock wait timed out
----------------|---------------------------|-------------------------------------
Reporting       | OPERATION_CANCELLED       | Cancellation token fired

A balance-sheet imbalance is NOT an exception: statements report it in
their ``imbalance`` field because historical data may genuinely be out of
balance and still needs to be displayed.
"""

from decimal import Decimal


class LedgerKernelError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_KERNEL_ERROR"


# Account-related exceptions


class AccountError(LedgerKernelError):
    """Base exception for chart-of-accounts errors."""

    code: str = "ACCOUNT_ERROR"


class UnknownAccountError(AccountError):
    """Account code is not registered."""

    code: str = "UNKNOWN_ACCOUNT"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__(f"Unknown account code: {account_code}")


class DuplicateAccountError(AccountError):
    """Account code already exists with a different type."""

    code: str = "DUPLICATE_ACCOUNT"

    def __init__(self, account_code: str, existing_type: str, requested_type: str):
        self.account_code = account_code
        self.existing_type = existing_type
        self.requested_type = requested_type
        super().__init__(
            f"Account {account_code} already registered as {existing_type}, "
            f"cannot register as {requested_type}"
        )


class AccountInactiveError(AccountError):
    """Account is deactivated and cannot receive new postings."""

    code: str = "ACCOUNT_INACTIVE"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__(f"Account {account_code} is inactive")


# Posting-related exceptions


class PostingError(LedgerKernelError):
    """Base exception for draft validation failures."""

    code: str = "POSTING_ERROR"


class UnbalancedEntryError(PostingError):
    """Entry-set debits do not equal credits."""

    code: str = "UNBALANCED_ENTRY"

    def __init__(self, debit_total: Decimal, credit_total: Decimal, diff: Decimal):
        self.debit_total = debit_total
        self.credit_total = credit_total
        self.diff = diff
        super().__init__(
            f"Unbalanced entry: debits={debit_total}, credits={credit_total}, "
            f"diff={diff}"
        )


class InvalidLineError(PostingError):
    """A single line breaks the debit/credit shape rules."""

    code: str = "INVALID_LINE"

    def __init__(self, line_index: int, reason: str):
        self.line_index = line_index
        self.reason = reason
        super().__init__(f"Invalid line {line_index}: {reason}")


class InvalidEntryError(PostingError):
    """The draft as a whole is malformed."""

    code: str = "INVALID_ENTRY"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid entry: {reason}")


# Entry lifecycle exceptions


class EntryError(LedgerKernelError):
    """Base exception for errors on stored entry-sets."""

    code: str = "ENTRY_ERROR"


class NotFoundError(EntryError):
    """Entry-set with given id was not found."""

    code: str = "NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Ledger entry not found: {entry_id}")


class AlreadyReversedError(EntryError):
    """A reversal entry already references the original."""

    code: str = "ALREADY_REVERSED"

    def __init__(self, entry_id: str, reversal_id: str | None = None):
        self.entry_id = entry_id
        self.reversal_id = reversal_id
        super().__init__(f"Ledger entry {entry_id} has already been reversed")


class EntryNotPostedError(EntryError):
    """Operation requires a posted entry."""

    code: str = "ENTRY_NOT_POSTED"

    def __init__(self, entry_id: str, status: str):
        self.entry_id = entry_id
        self.status = status
        super().__init__(
            f"Ledger entry {entry_id} is {status}, expected posted"
        )


class EntrySettledError(EntryError):
    """Void refused because payments were allocated against the entry."""

    code: str = "ENTRY_SETTLED"

    def __init__(self, entry_id: str, payment_entry_ids: list[str]):
        self.entry_id = entry_id
        self.payment_entry_ids = payment_entry_ids
        super().__init__(
            f"Ledger entry {entry_id} is settled by "
            f"{len(payment_entry_ids)} payment allocation(s)"
        )


# Allocation exceptions


class AllocationError(LedgerKernelError):
    """Base exception for payment allocation errors."""

    code: str = "ALLOCATION_ERROR"


class NoOutstandingBalanceError(AllocationError):
    """
    Targeted month has nothing outstanding.

    Usually a double payment; surfaced for review instead of silently
    turning the money into an advance.
    """

    code: str = "NO_OUTSTANDING_BALANCE"

    def __init__(self, debtor_id: str, month_key: str):
        self.debtor_id = debtor_id
        self.month_key = month_key
        super().__init__(
            f"No outstanding balance for debtor {debtor_id} in {month_key}"
        )


class InvalidPaymentError(AllocationError):
    """Payment input is unusable."""

    code: str = "INVALID_PAYMENT"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid payment: {reason}")


class InsufficientDepositError(AllocationError):
    """Forfeit or refund larger than the deposit held for the debtor."""

    code: str = "INSUFFICIENT_DEPOSIT"

    def __init__(self, debtor_id: str, requested: Decimal, held: Decimal):
        self.debtor_id = debtor_id
        self.requested = requested
        self.held = held
        super().__init__(
            f"Debtor {debtor_id} holds {held} deposit, {requested} requested"
        )


class DebtorBusyError(AllocationError):
    """Another unit of work held the debtor's lock past the wait timeout."""

    code: str = "DEBTOR_BUSY"

    def __init__(self, debtor_id: str, timeout: float):
        self.debtor_id = debtor_id
        self.timeout = timeout
        super().__init__(
            f"Debtor {debtor_id} is locked by another transaction (waited {timeout}s)"
        )


# Cancellation


class OperationCancelledError(LedgerKernelError):
    """A long-running aggregation observed a cancelled token."""

    code: str = "OPERATION_CANCELLED"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Operation cancelled: {operation}")
