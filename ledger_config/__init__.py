"""
ledger_config -- single public entrypoint for ledger configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains
    configuration: the chart of accounts, account roles, the payment-method
    to cash-account map, the posting tolerance, and database/logging
    settings.  Services receive the resulting ``LedgerConfig`` (or its
    ``AccountRoles``) explicitly; nothing reads configuration from
    process-wide globals.

Architecture position:
    Configuration.  Sits above ``ledger_kernel`` and below
    ``ledger_modules``.  The kernel never imports from this package.

Failure modes:
    - ``FileNotFoundError`` -- no configuration set with the requested name.
    - ``KeyError`` / ``ValueError`` -- schema problems (see loader).

Audit relevance:
    Every successful ``get_active_config()`` call logs a
    ``ledger_config_loaded`` line carrying the set name, version and
    checksum, tying postings to the configuration that governed them.
"""

from __future__ import annotations

import logging
from pathlib import Path

from ledger_config.loader import compute_checksum, load_config
from ledger_config.schema import (
    AccountDef,
    AccountRoles,
    DatabaseConfig,
    LedgerConfig,
    LoggingConfig,
)

_logger = logging.getLogger("ledger_kernel.config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"

__all__ = [
    "AccountDef",
    "AccountRoles",
    "DatabaseConfig",
    "LedgerConfig",
    "LoggingConfig",
    "compute_checksum",
    "get_active_config",
    "load_config",
    "seed_chart_of_accounts",
]


def get_active_config(
    name: str = "default",
    config_dir: Path | None = None,
) -> LedgerConfig:
    """
    Load the configuration set ``<config_dir>/<name>.yaml``.

    Raises:
        FileNotFoundError: If the set does not exist.
    """
    sets_dir = Path(config_dir) if config_dir is not None else _DEFAULT_CONFIG_DIR
    path = sets_dir / f"{name}.yaml"
    if not path.is_file():
        raise FileNotFoundError(f"Configuration set not found: {path}")

    config = load_config(path)

    _logger.info(
        "ledger_config_loaded",
        extra={
            "config_name": config.name,
            "config_version": config.version,
            "checksum": config.checksum,
            "account_count": len(config.accounts),
            "currency": config.currency,
        },
    )
    return config


def seed_chart_of_accounts(registry, config: LedgerConfig, acting_user: str) -> int:
    """
    Register every configured account with ``registry`` (idempotent).

    Parents are registered before their subaccounts.  Returns the number of
    accounts in the chart.
    """
    ordered = sorted(config.accounts, key=lambda a: a.parent_code is not None)
    for account in ordered:
        registry.register_account(
            code=account.code,
            name=account.name,
            account_type=account.account_type,
            acting_user=acting_user,
            parent_code=account.parent_code,
        )
    _logger.info(
        "chart_of_accounts_seeded",
        extra={"config_name": config.name, "account_count": len(ordered)},
    )
    return len(ordered)
