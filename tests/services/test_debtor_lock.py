"""Per-debtor serialization."""

import threading
import time
from datetime import date
from decimal import Decimal

import pytest

from ledger_config import seed_chart_of_accounts
from ledger_kernel.db.engine import (
    create_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from ledger_kernel.domain.billing import BillingPeriod
from ledger_kernel.exceptions import DebtorBusyError
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.debtor_lock import DebtorLockRegistry, shared_registry
from ledger_kernel.services.posting_engine import PostingEngine
from ledger_modules.accruals import (
    AccrualScheduler,
    BillingAgreement,
    StaticAgreementProvider,
)
from ledger_modules.payments import Payment, PaymentAllocator

ACTOR = "clerk-01"


def test_lock_held_only_inside_block():
    locks = DebtorLockRegistry()
    assert not locks.is_locked("D")
    with locks.hold("D"):
        assert locks.is_locked("D")
        assert not locks.is_locked("E")
    assert not locks.is_locked("D")


def test_released_on_error():
    locks = DebtorLockRegistry()
    try:
        with locks.hold("D"):
            raise RuntimeError("boom")
    except RuntimeError:
        pass
    assert not locks.is_locked("D")


def test_same_debtor_is_serialized():
    locks = DebtorLockRegistry()
    order: list[str] = []
    entered = threading.Event()

    def first():
        with locks.hold("D"):
            entered.set()
            time.sleep(0.05)
            order.append("first-done")

    def second():
        entered.wait()
        with locks.hold("D"):
            order.append("second")

    threads = [threading.Thread(target=first), threading.Thread(target=second)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    assert order == ["first-done", "second"]


def test_different_debtors_do_not_block():
    locks = DebtorLockRegistry()
    with locks.hold("D"):
        acquired = threading.Event()

        def other():
            with locks.hold("E"):
                acquired.set()

        t = threading.Thread(target=other)
        t.start()
        assert acquired.wait(timeout=5)
        t.join(timeout=5)


def test_wait_timeout_raises_busy(captured_logs):
    locks = DebtorLockRegistry(timeout=0.01)
    with locks.hold("D"):
        with pytest.raises(DebtorBusyError) as exc_info:
            with locks.hold("D"):
                pass
    assert exc_info.value.debtor_id == "D"
    assert any(r["message"] == "debtor_lock_timeout" for r in captured_logs())


class TestTransactionScope:
    @pytest.mark.parametrize("finish", ["commit", "rollback", "close"])
    def test_held_until_transaction_ends(self, session, registry, finish):
        locks = DebtorLockRegistry()
        locks.hold_until_end(session, "D")
        locks.hold_until_end(session, "D")  # re-entrant within the session
        assert locks.is_locked("D")

        getattr(session, finish)()
        assert not locks.is_locked("D")

    def test_services_default_to_shared_registry(self, session, engine, config):
        assert PaymentAllocator(session, engine, config).locks is shared_registry()


def test_second_session_waits_for_first_commit(tmp_path, config):
    """Two allocators on two sessions cannot both settle the same month."""
    init_engine_from_url(f"sqlite:///{tmp_path / 'ledger.db'}")
    try:
        create_tables()
        debtor = "D-two-sessions"
        provider = StaticAgreementProvider(
            [
                BillingAgreement(
                    lease_id="L-two-sessions",
                    debtor_id=debtor,
                    billing_period=BillingPeriod(date(2025, 5, 1), date(2025, 12, 31), Decimal("180.00")),
                )
            ]
        )
        with session_scope() as setup:
            registry = AccountRegistry(setup)
            seed_chart_of_accounts(registry, config, ACTOR)
            AccrualScheduler(setup, PostingEngine(setup, registry), config, provider).generate_monthly_accruals(5, 2025, ACTOR)

        def _allocator(session):
            return PaymentAllocator(session, PostingEngine(session, AccountRegistry(session)), config)

        first = get_session()
        result_a = _allocator(first).allocate_payment(
            Payment("P-A", debtor, Decimal("180.00"), date(2025, 5, 20), "Cash"), ACTOR
        )
        assert result_a.amount_settled == Decimal("180.00")
        assert shared_registry().is_locked(debtor)

        outcome: dict = {}

        def _second():
            second = get_session()
            try:
                outcome["result"] = _allocator(second).allocate_payment(
                    Payment("P-B", debtor, Decimal("180.00"), date(2025, 5, 21), "Cash"), ACTOR
                )
                second.commit()
            except Exception as exc:  # surfaced by the assertions below
                outcome["error"] = exc
                second.rollback()
            finally:
                second.close()

        worker = threading.Thread(target=_second)
        worker.start()
        worker.join(timeout=0.2)
        assert worker.is_alive(), "second allocation ran while the first was uncommitted"

        first.commit()
        first.close()
        worker.join(timeout=10)

        assert "error" not in outcome
        result_b = outcome["result"]
        assert result_b.amount_settled == Decimal("0")
        assert result_b.amount_deferred == Decimal("180.00")
        assert not shared_registry().is_locked(debtor)
    finally:
        reset_engine()
