"""Entry store queries, effective-entry rules and orphan cleanup."""

from datetime import date
from decimal import Decimal

import pytest

from ledger_kernel.domain.dtos import EntryFilter
from ledger_kernel.exceptions import NotFoundError
from ledger_kernel.models.ledger_entry import EntrySource, EntryStatus
from ledger_modules.maintenance import known_sources

ACTOR = "clerk-01"


class TestGet:
    def test_get_round_trips(self, store, post_simple):
        entry = post_simple()
        assert store.get(entry.id) is entry
        assert store.get(str(entry.id)) is entry

    def test_unknown_id(self, store):
        with pytest.raises(NotFoundError):
            store.get("00000000-0000-0000-0000-000000000000")


class TestFind:
    def test_date_window_and_order(self, store, post_simple):
        late = post_simple(entry_date=date(2025, 6, 2))
        early = post_simple(entry_date=date(2025, 5, 2))
        post_simple(entry_date=date(2025, 7, 1))

        found = store.find(EntryFilter(start_date=date(2025, 5, 1), end_date=date(2025, 6, 30)))
        assert [e.id for e in found] == [early.id, late.id]

    def test_filter_by_source_and_debtor(self, store, post_simple):
        refund = post_simple(source=EntrySource.REFUND, debtor_id="D")
        post_simple(source=EntrySource.REFUND, debtor_id="E")
        post_simple(debtor_id="D")

        found = store.find(EntryFilter(sources={"refund"}, debtor_id="D"))
        assert [e.id for e in found] == [refund.id]

    def test_filter_by_account_and_prefix(self, store, post_simple, registry):
        registry.ensure_subaccount("1100", "D", ACTOR)
        receivable = post_simple(debit_code="1100-D", credit_code="4000")
        post_simple()

        assert [e.id for e in store.find(EntryFilter(account_code="1100-D"))] == [receivable.id]
        assert [e.id for e in store.find(EntryFilter(account_prefix="1100"))] == [receivable.id]

    def test_metadata_filter(self, store, post_simple):
        tagged = post_simple(metadata={"type": "lease_start"})
        post_simple(metadata={"type": "other"})
        assert [e.id for e in store.find(EntryFilter(metadata={"type": "lease_start"}))] == [
            tagged.id
        ]

    def test_voided_excluded_by_default(self, store, engine, post_simple):
        entry = post_simple()
        engine.void(entry.id, "x", ACTOR)
        assert store.find() == []
        voided = store.find(EntryFilter(statuses={EntryStatus.VOIDED}))
        assert [e.id for e in voided] == [entry.id]


class TestEffective:
    def test_reversed_and_reversals_are_not_effective(self, store, engine, post_simple):
        kept = post_simple()
        reversed_entry = post_simple()
        reversal = engine.reverse(reversed_entry.id, "r", ACTOR)

        assert [e.id for e in store.find_effective()] == [kept.id]
        assert store.is_effective(kept)
        assert not store.is_effective(reversed_entry)
        assert store.reversal_of(reversed_entry.id).id == reversal.id
        assert store.reversed_ids([kept.id, reversed_entry.id]) == {reversed_entry.id}

    def test_effective_by_key(self, store, engine, post_simple):
        first = post_simple(idempotency_key="x:1")
        assert store.find_effective_by_key("x:1").id == first.id
        engine.reverse(first.id, "r", ACTOR)
        assert store.find_effective_by_key("x:1") is None


class TestOrphanCleanup:
    def _lease_entry(self, post_simple, lease_id, **kw):
        return post_simple(source_id=lease_id, source_model="Lease", **kw)

    def test_dry_run_deletes_nothing(self, store, post_simple):
        orphan = self._lease_entry(post_simple, "L-gone")
        report = store.purge_orphans(
            known_sources({"Lease": {"L-live"}}), ACTOR, dry_run=True
        )
        assert report.dry_run
        assert report.deleted_entry_ids == (orphan.id,)
        assert store.get(orphan.id) is orphan

    def test_deletes_orphan_with_reversal(self, store, engine, post_simple, captured_logs):
        live = self._lease_entry(post_simple, "L-live")
        orphan = self._lease_entry(post_simple, "L-gone")
        reversal = engine.reverse(orphan.id, "r", ACTOR)
        untagged = post_simple()

        report = store.purge_orphans(known_sources({"Lease": {"L-live"}}), ACTOR)

        assert report.examined == 2
        assert set(report.deleted_entry_ids) == {orphan.id, reversal.id}
        remaining = {e.id for e in store.find()}
        assert remaining == {live.id, untagged.id}
        deleted_logs = [r for r in captured_logs() if r["message"] == "orphan_entry_deleted"]
        assert len(deleted_logs) == 2
        assert all(r["level"] == "WARNING" for r in deleted_logs)

    def test_unlisted_models_are_kept(self, store, post_simple):
        payment = post_simple(source_id="P-1", source_model="Payment")
        report = store.purge_orphans(known_sources({"Lease": set()}), ACTOR)
        assert report.deleted_count == 0
        assert store.get(payment.id) is payment

    def test_allocations_removed_with_orphan(
        self, store, scheduler, allocator, make_agreement
    ):
        from ledger_modules.payments import Payment

        make_agreement()
        scheduler.generate_monthly_accruals(5, 2025, ACTOR)
        allocator.allocate_payment(
            Payment("P-1", "D", Decimal("180"), date(2025, 5, 3), "Cash"), ACTOR
        )
        assert len(store.effective_allocations(debtor_id="D")) == 1

        report = store.purge_orphans(known_sources({"Lease": set(), "Payment": {"P-1"}}), ACTOR)
        assert report.deleted_allocations == 1
        assert store.effective_allocations(debtor_id="D") == []
