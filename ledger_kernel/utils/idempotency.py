"""
Idempotency key builders.

Keys are stored on the entry-set (``idempotency_key``) and checked before
posting so that re-running a scheduled job never double-posts.  A key only
blocks a new posting while the entry carrying it is still effective (posted
and not reversed).
"""


def accrual_key(lease_id: str, month_key: str) -> str:
    """
    Example:
        >>> accrual_key("L-17", "2025-05")
        'accrual:L-17:2025-05'
    """
    return f"accrual:{lease_id}:{month_key}"


def lease_start_key(lease_id: str) -> str:
    return f"lease_start:{lease_id}"


def deferred_recognition_key(lease_id: str, month_key: str) -> str:
    return f"deferred:{lease_id}:{month_key}"


def payment_key(payment_id: str) -> str:
    return f"payment:{payment_id}"


def expense_accrual_key(expense_id: str) -> str:
    return f"expense_accrual:{expense_id}"


def parse_key(key: str) -> tuple[str, ...]:
    """
    Split a key into its ``:``-separated parts.

    Raises:
        ValueError: If the key has fewer than two parts.
    """
    parts = tuple(key.split(":"))
    if len(parts) < 2 or not all(parts):
        raise ValueError(f"Invalid idempotency key: {key!r}")
    return parts


def deposit_reversal_key(lease_start_entry_id) -> str:
    return f"deposit_reversal:{lease_start_entry_id}"
