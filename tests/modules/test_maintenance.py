"""Orphan cleanup and the ledger integrity check."""

from datetime import date
from decimal import Decimal

from ledger_kernel.models.ledger_entry import LedgerLine
from ledger_modules.maintenance import known_sources

ACTOR = "clerk-01"


def test_known_sources_treats_unlisted_models_as_present():
    exists = known_sources({"Lease": ["L-1"]})
    assert exists("Lease", "L-1")
    assert not exists("Lease", "L-2")
    assert exists("Payment", "P-9")
    assert exists(None, "x")


def test_cleanup_removes_entries_of_deleted_leases(maintenance, scheduler, make_agreement, store):
    make_agreement()
    make_agreement(lease_id="L-2", debtor_id="E")
    scheduler.generate_monthly_accruals(5, 2025, ACTOR)

    preview = maintenance.cleanup_orphans(known_sources({"Lease": ["L-1"]}), ACTOR, dry_run=True)
    assert preview.deleted_count == 1
    assert len(store.find()) == 2

    report = maintenance.cleanup_orphans(known_sources({"Lease": ["L-1"]}), ACTOR)
    assert report.deleted_count == 1
    assert [e.source_id for e in store.find()] == ["L-1"]


def test_clean_ledger(maintenance, post_simple, captured_logs):
    post_simple("10")
    post_simple("20", entry_date=date(2025, 6, 1))
    report = maintenance.check_integrity()

    assert report.is_clean
    assert report.entry_count == 2
    assert report.total_debits == Decimal("30")
    assert report.difference == Decimal("0")
    assert any(r["message"] == "ledger_integrity_checked" for r in captured_logs())


def test_tampered_entry_is_reported(maintenance, post_simple, session, captured_logs):
    entry = post_simple("10")
    # simulate a row edited outside the posting engine
    line = session.get(LedgerLine, entry.lines[1].id)
    line.credit = Decimal("7")
    session.flush()

    report = maintenance.check_integrity()
    assert not report.is_clean
    assert report.unbalanced_entry_ids == (entry.id,)
    assert report.difference == Decimal("3")
    warnings = [r for r in captured_logs() if r["message"] == "ledger_integrity_violation"]
    assert warnings and warnings[0]["level"] == "WARNING"
