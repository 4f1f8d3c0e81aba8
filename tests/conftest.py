"""
Pytest fixtures for the ledger test suite.

Provides:
- An in-memory SQLite database per test (tables created fresh)
- The default configuration set and a seeded chart of accounts
- A deterministic clock and the kernel/module services wired to it
- Structured-logging capture

No external database is needed; the engine helper switches SQLite
in-memory URLs onto a StaticPool so every session sees the same data.
"""

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO

import pytest

from ledger_config import get_active_config, seed_chart_of_accounts
from ledger_kernel.db.engine import (
    create_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from ledger_kernel.domain.billing import BillingPeriod
from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.domain.dtos import EntryDraft
from ledger_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from ledger_kernel.models.ledger_entry import EntrySource
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.debtor_lock import DebtorLockRegistry
from ledger_kernel.services.entry_store import LedgerEntryStore
from ledger_kernel.services.posting_engine import PostingEngine
from ledger_modules.accruals import (
    AccrualScheduler,
    BillingAgreement,
    StaticAgreementProvider,
)
from ledger_modules.deposits import DepositService
from ledger_modules.expenses import ExpenseService
from ledger_modules.maintenance import MaintenanceService
from ledger_modules.payments import PaymentAllocator
from ledger_modules.reporting import ReportingService

# Acting user for all test operations
TEST_ACTOR = "clerk-01"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture ledger_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, engine):
            engine.post(draft, TEST_ACTOR)
            assert any(r["message"] == "entry_posted" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("ledger_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_engine():
    engine = init_engine_from_url("sqlite:///:memory:")
    create_tables()
    yield engine
    reset_engine()


@pytest.fixture
def session(db_engine):
    session = get_session()
    yield session
    session.rollback()
    session.close()


# =============================================================================
# Configuration and kernel services
# =============================================================================


@pytest.fixture
def config():
    return get_active_config()


@pytest.fixture
def roles(config):
    return config.roles


@pytest.fixture
def clock():
    return DeterministicClock(datetime(2025, 5, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def registry(session, config):
    registry = AccountRegistry(session)
    seed_chart_of_accounts(registry, config, TEST_ACTOR)
    return registry


@pytest.fixture
def store(session):
    return LedgerEntryStore(session)


@pytest.fixture
def engine(session, registry, store, clock, config):
    return PostingEngine(session, registry, store, clock=clock, tolerance=config.tolerance)


@pytest.fixture
def selector(session):
    return LedgerSelector(session)


@pytest.fixture
def locks():
    return DebtorLockRegistry()


# =============================================================================
# Module services
# =============================================================================


@pytest.fixture
def provider():
    return StaticAgreementProvider()


@pytest.fixture
def scheduler(session, engine, config, provider, locks):
    return AccrualScheduler(session, engine, config, provider, locks)


@pytest.fixture
def allocator(session, engine, config, provider, locks):
    return PaymentAllocator(session, engine, config, provider, locks)


@pytest.fixture
def deposits(session, engine, config, locks):
    return DepositService(session, engine, config, locks)


@pytest.fixture
def expenses(engine, config):
    return ExpenseService(engine, config)


@pytest.fixture
def reporting(session, config, clock, allocator):
    return ReportingService(session, config, clock=clock, allocator=allocator)


@pytest.fixture
def maintenance(session, store):
    return MaintenanceService(session, store)


# =============================================================================
# Builders
# =============================================================================


@pytest.fixture
def make_agreement(provider):
    """
    Build a BillingAgreement and register it with the provider.

    Defaults describe debtor ``D`` renting at 180.00/month from May 2025.
    """

    def _make(
        lease_id: str = "L-1",
        debtor_id: str = "D",
        start: date = date(2025, 5, 1),
        end: date = date(2025, 12, 31),
        monthly: str = "180.00",
        admin_fee: str = "0",
        deposit: str = "0",
        residence_id: str | None = "R1",
        register: bool = True,
    ) -> BillingAgreement:
        agreement = BillingAgreement(
            lease_id=lease_id,
            debtor_id=debtor_id,
            billing_period=BillingPeriod(start, end, Decimal(monthly)),
            residence_id=residence_id,
            admin_fee=Decimal(admin_fee),
            security_deposit=Decimal(deposit),
        )
        if register:
            provider.add(agreement)
        return agreement

    return _make


@pytest.fixture
def post_simple(engine, roles):
    """Post a two-line entry-set: debit ``debit_code``, credit ``credit_code``."""

    def _post(
        amount="100.00",
        debit_code: str | None = None,
        credit_code: str | None = None,
        entry_date: date = date(2025, 5, 15),
        source: EntrySource = EntrySource.MANUAL,
        **header,
    ):
        draft = EntryDraft(
            entry_date=entry_date,
            source=source,
            lines=(
                EntryDraft.debit(debit_code or roles.cash, amount),
                EntryDraft.credit(credit_code or roles.other_income, amount),
            ),
            **header,
        )
        return engine.post(draft, TEST_ACTOR)

    return _post
