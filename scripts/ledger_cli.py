#!/usr/bin/env python3
"""
Command-line access to the ledger.

Initialises the schema, seeds the chart of accounts, runs the monthly
accrual and deferred-income jobs, and prints balances and statements as
JSON.  Billing agreements are read from a YAML file because the ledger
never stores leases itself.

Usage:
  python3 scripts/ledger_cli.py --database-url sqlite:///ledger.db init-db
  python3 scripts/ledger_cli.py --actor ops seed
  python3 scripts/ledger_cli.py --actor ops accrue --month 5 --year 2025 \\
      --agreements leases.yaml
  python3 scripts/ledger_cli.py balance 1100-D42 --as-of 2025-05-31
  python3 scripts/ledger_cli.py statement balance_sheet --as-of 2025-12-31 \\
      --basis cash

Agreements file:
  - lease_id: L-1
    debtor_id: D42
    residence_id: R1
    start_date: 2025-05-01
    end_date: 2025-12-31
    monthly_amount: "180.00"
    admin_fee: "20.00"
    security_deposit: "180.00"
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import date, datetime
from pathlib import Path

import yaml

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ledger_config import get_active_config, seed_chart_of_accounts  # noqa: E402
from ledger_kernel.db.engine import (  # noqa: E402
    create_tables,
    init_engine_from_url,
    session_scope,
)
from ledger_kernel.domain.billing import BillingCycle, BillingPeriod  # noqa: E402
from ledger_kernel.domain.clock import SystemClock  # noqa: E402
from ledger_kernel.exceptions import LedgerKernelError  # noqa: E402
from ledger_kernel.logging_config import configure_logging  # noqa: E402
from ledger_kernel.services.account_registry import AccountRegistry  # noqa: E402
from ledger_kernel.services.posting_engine import PostingEngine  # noqa: E402
from ledger_modules.accruals import (  # noqa: E402
    AccrualScheduler,
    BillingAgreement,
    StaticAgreementProvider,
)
from ledger_modules.maintenance import MaintenanceService  # noqa: E402
from ledger_modules.payments import PaymentAllocator  # noqa: E402
from ledger_modules.reporting import ReportingService, render_to_dict  # noqa: E402


def _parse_date(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from exc


def _as_date(value) -> date:
    # PyYAML already turns unquoted ISO dates into date objects
    return value if isinstance(value, date) else _parse_date(str(value))


def load_agreements(path: Path) -> list[BillingAgreement]:
    """
    Read billing agreements from a YAML list.

    Raises:
        KeyError: A required field is missing.
        ValueError: A field is malformed.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or []
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of agreements")

    agreements = []
    for item in data:
        cycle = BillingCycle(frequency=item.get("frequency", "monthly"))
        agreements.append(
            BillingAgreement(
                lease_id=str(item["lease_id"]),
                debtor_id=str(item["debtor_id"]),
                residence_id=item.get("residence_id"),
                billing_period=BillingPeriod(
                    start_date=_as_date(item["start_date"]),
                    end_date=_as_date(item["end_date"]),
                    monthly_amount=item["monthly_amount"],
                    billing_cycle=cycle,
                ),
                admin_fee=item.get("admin_fee", "0"),
                security_deposit=item.get("security_deposit", "0"),
                is_active=bool(item.get("is_active", True)),
            )
        )
    return agreements


def _emit(payload) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _run_summary(created, skipped) -> dict:
    return {
        "created": [str(e.id) for e in created],
        "skipped": [
            {"lease_id": s.lease_id, "reason": s.reason, "month_key": s.month_key}
            for s in skipped
        ],
    }


def _require_actor(args) -> str:
    if not args.actor:
        raise SystemExit("--actor is required for commands that post entries")
    return args.actor


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_init_db(args, config) -> int:
    create_tables()
    _emit({"status": "ok", "tables_created": True})
    return 0


def cmd_seed(args, config) -> int:
    actor = _require_actor(args)
    with session_scope() as session:
        count = seed_chart_of_accounts(AccountRegistry(session), config, actor)
    _emit({"status": "ok", "accounts": count})
    return 0


def _engine_for(session, config) -> PostingEngine:
    return PostingEngine(
        session, AccountRegistry(session), clock=SystemClock(), tolerance=config.tolerance
    )


def cmd_accrue(args, config) -> int:
    actor = _require_actor(args)
    provider = StaticAgreementProvider(load_agreements(args.agreements))
    with session_scope() as session:
        scheduler = AccrualScheduler(session, _engine_for(session, config), config, provider)
        if args.lease_start:
            created, skipped = [], []
            for agreement in provider.active_agreements(date.min, date.max):
                result = scheduler.post_lease_start(agreement, actor)
                created.extend(result.created)
                skipped.extend(result.skipped)
            summary = _run_summary(created, skipped)
        else:
            result = scheduler.generate_monthly_accruals(args.month, args.year, actor)
            summary = _run_summary(result.created, result.skipped)
    _emit(summary)
    return 0


def cmd_recognize_deferred(args, config) -> int:
    actor = _require_actor(args)
    provider = StaticAgreementProvider(load_agreements(args.agreements))
    with session_scope() as session:
        allocator = PaymentAllocator(session, _engine_for(session, config), config, provider)
        result = allocator.recognize_deferred_income(args.month, args.year, actor)
        summary = _run_summary(result.created, result.skipped)
    _emit(summary)
    return 0


def cmd_balance(args, config) -> int:
    with session_scope() as session:
        reporting = ReportingService(session, config)
        balance = reporting.account_balance(
            args.code,
            as_of=args.as_of,
            basis=args.basis,
            include_subaccounts=args.include_subaccounts,
        )
    _emit(
        {
            "account_code": args.code,
            "as_of": (args.as_of or date.today()).isoformat(),
            "basis": args.basis,
            "balance": str(balance),
        }
    )
    return 0


def cmd_statement(args, config) -> int:
    with session_scope() as session:
        reporting = ReportingService(session, config)
        report = reporting.statement(
            args.kind,
            as_of=args.as_of,
            start=args.start,
            end=args.end,
            basis=args.basis,
        )
        payload = render_to_dict(report)
    _emit(payload)
    return 0


def cmd_aging(args, config) -> int:
    with session_scope() as session:
        payload = render_to_dict(ReportingService(session, config).debtor_aging(args.as_of))
    _emit(payload)
    return 0


def cmd_check(args, config) -> int:
    with session_scope() as session:
        report = MaintenanceService(session).check_integrity(tolerance=config.tolerance)
        payload = render_to_dict(report)
        payload["is_clean"] = report.is_clean
    _emit(payload)
    return 0 if report.is_clean else 2


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Student-residence ledger operations.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", default="default", help="Configuration set name")
    parser.add_argument("--config-dir", type=Path, default=None, help="Directory of configuration sets")
    parser.add_argument("--database-url", default=None, help="Overrides database.url from the config")
    parser.add_argument("--actor", default=None, help="Acting user recorded on postings")
    parser.add_argument("--log-level", default=None, help="Overrides logging.level from the config")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-db", help="Create the ledger tables")
    p.set_defaults(func=cmd_init_db)

    p = sub.add_parser("seed", help="Register the configured chart of accounts")
    p.set_defaults(func=cmd_seed)

    for name, func, helptext in (
        ("accrue", cmd_accrue, "Post monthly rent accruals"),
        ("recognize-deferred", cmd_recognize_deferred, "Recognise deferred income for a month"),
    ):
        p = sub.add_parser(name, help=helptext)
        p.add_argument("--month", type=int, required=name != "accrue")
        p.add_argument("--year", type=int, required=name != "accrue")
        p.add_argument("--agreements", type=Path, required=True)
        if name == "accrue":
            p.add_argument("--lease-start", action="store_true", help="Post lease-start charges instead")
        p.set_defaults(func=func)

    p = sub.add_parser("balance", help="Cumulative balance of one account")
    p.add_argument("code")
    p.add_argument("--as-of", type=_parse_date, default=None)
    p.add_argument("--basis", choices=["accrual", "cash"], default="accrual")
    p.add_argument("--include-subaccounts", action="store_true")
    p.set_defaults(func=cmd_balance)

    p = sub.add_parser("statement", help="Balance sheet, income statement or cash flow")
    p.add_argument("kind", choices=["balance_sheet", "income_statement", "cash_flow"])
    p.add_argument("--as-of", type=_parse_date, default=None)
    p.add_argument("--start", type=_parse_date, default=None)
    p.add_argument("--end", type=_parse_date, default=None)
    p.add_argument("--basis", choices=["accrual", "cash"], default="accrual")
    p.set_defaults(func=cmd_statement)

    p = sub.add_parser("aging", help="Debtor aging buckets")
    p.add_argument("--as-of", type=_parse_date, default=None)
    p.set_defaults(func=cmd_aging)

    p = sub.add_parser("check", help="Ledger integrity check")
    p.set_defaults(func=cmd_check)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "accrue" and not args.lease_start and (args.month is None or args.year is None):
        parser.error("accrue needs --month and --year unless --lease-start is given")

    config = get_active_config(args.config, args.config_dir)
    configure_logging(
        level=args.log_level or config.logging.level,
        static_fields={"config_name": config.name},
    )

    init_engine_from_url(args.database_url or config.database.url, echo=config.database.echo)

    try:
        return args.func(args, config)
    except (LedgerKernelError, KeyError, ValueError) as exc:
        _emit({"status": "error", "error": type(exc).__name__, "message": str(exc)})
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
