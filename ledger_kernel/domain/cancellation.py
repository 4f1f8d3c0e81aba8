"""Cooperative cancellation for long-running aggregations."""

import threading

from ledger_kernel.exceptions import OperationCancelledError


class CancellationToken:
    """
    Shared flag a caller flips to abort a report.

    Aggregations call ``raise_if_cancelled()`` between units of work (per
    account, per debtor).  Nothing is written by an aggregation, so aborting
    part way leaves no state behind.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, operation: str) -> None:
        if self._event.is_set():
            raise OperationCancelledError(operation)


def check_cancelled(token: CancellationToken | None, operation: str) -> None:
    """No-op when no token was supplied."""
    if token is not None:
        token.raise_if_cancelled(operation)
