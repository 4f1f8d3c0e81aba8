"""
Per-debtor serialization.

Accrual generation and payment allocation for one debtor must not
interleave, or two payments could both claim the same outstanding month.
Different debtors proceed in parallel.

Two layers:
    - ``DebtorLockRegistry`` keeps one ``threading.Lock`` per debtor.
      Services share the process-wide registry from ``shared_registry()``
      unless one is injected.  ``hold_until_end`` keeps the lock until the
      session's transaction commits or rolls back, so a second session
      cannot read the debtor's balances while the first one's writes are
      still pending.
    - ``serialize_debtor`` also locks the debtor's receivable subaccount
      row ``FOR UPDATE``, which covers other processes on databases with
      row locks.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import event
from sqlalchemy.orm import Session, SessionTransaction

from ledger_kernel.exceptions import DebtorBusyError
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.debtor_lock")

DEFAULT_TIMEOUT = 30.0


class DebtorLockRegistry:
    """Keyed ``threading.Lock`` per debtor id, created on first use."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._session_key = f"debtor_locks:{id(self)}"

    def _lock_for(self, debtor_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(debtor_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[debtor_id] = lock
            return lock

    def _acquire(self, debtor_id: str, timeout: float | None) -> threading.Lock:
        lock = self._lock_for(debtor_id)
        wait = self.timeout if timeout is None else timeout
        if not lock.acquire(timeout=wait):
            logger.warning("debtor_lock_timeout", extra={"debtor_id": debtor_id, "timeout": wait})
            raise DebtorBusyError(debtor_id, wait)
        logger.debug("debtor_lock_acquired", extra={"debtor_id": debtor_id})
        return lock

    @contextmanager
    def hold(self, debtor_id: str, timeout: float | None = None) -> Iterator[None]:
        """Hold the debtor's lock for the duration of the block."""
        lock = self._acquire(str(debtor_id), timeout)
        try:
            yield
        finally:
            lock.release()
            logger.debug("debtor_lock_released", extra={"debtor_id": debtor_id})

    def hold_until_end(self, session: Session, debtor_id: str, timeout: float | None = None) -> None:
        """
        Take the debtor's lock for the rest of ``session``'s transaction.

        Re-entrant per session: a unit of work that touches the same debtor
        through several services takes the lock once.  Released when the
        outermost transaction ends (commit, rollback or close).

        Raises:
            DebtorBusyError: Another transaction kept the lock past ``timeout``.
        """
        debtor_id = str(debtor_id)
        held: set[str] = session.info.setdefault(self._session_key, set())
        if debtor_id in held:
            return
        self._acquire(debtor_id, timeout)
        held.add(debtor_id)
        if not session.info.get(self._session_key + ":listening"):
            event.listen(session, "after_transaction_end", self._release_at_end)
            session.info[self._session_key + ":listening"] = True

    def _release_at_end(self, session: Session, transaction: SessionTransaction) -> None:
        if transaction.parent is not None:
            return
        held = session.info.get(self._session_key)
        if not held:
            return
        for debtor_id in sorted(held):
            self._lock_for(debtor_id).release()
            logger.debug("debtor_lock_released", extra={"debtor_id": debtor_id})
        held.clear()

    def is_locked(self, debtor_id: str) -> bool:
        with self._guard:
            lock = self._locks.get(str(debtor_id))
        return lock is not None and lock.locked()


_shared = DebtorLockRegistry()


def shared_registry() -> DebtorLockRegistry:
    """The process-wide registry services use when none is injected."""
    return _shared


def serialize_debtor(
    session: Session,
    locks: DebtorLockRegistry,
    registry,
    control_code: str,
    debtor_id: str,
    acting_user: str,
) -> None:
    """
    Serialize the rest of this transaction against other work for ``debtor_id``.

    Takes the in-process lock until the transaction ends, then locks the
    debtor's ``<control>-<debtorId>`` account row ``FOR UPDATE`` (a no-op on
    SQLite, which serializes writers itself).
    """
    locks.hold_until_end(session, debtor_id)
    account = registry.ensure_subaccount(control_code, debtor_id, acting_user)
    registry.lock_for_update(account.code)
