"""
Configuration Loader (``ledger_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into the frozen dataclasses of
``ledger_config.schema``.  Runtime callers go through
``ledger_config.get_active_config()``; ``load_config`` is public for tests
and for the CLI's ``--config`` option.

Invariants enforced
-------------------
* No silent defaults for required keys: a missing key raises ``KeyError``.
* Account types are validated against ``AccountType``; every role and
  payment method must name a configured account.
* ``compute_checksum`` gives a deterministic identity for the loaded data.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError``.
* Bad values (types, tolerance, unknown role codes)  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import (
    AccountDef,
    AccountRoles,
    DatabaseConfig,
    LedgerConfig,
    LoggingConfig,
)
from ledger_kernel.models.account import AccountType


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_decimal(value: Any, field_name: str) -> Decimal:
    try:
        result = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{field_name} is not a number: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"{field_name} is not a number: {value!r}")
    return result


def parse_account(data: dict[str, Any]) -> AccountDef:
    """Parse an ``AccountDef``; the type must be a known ``AccountType``."""
    code = str(data["code"]).strip()
    if not code:
        raise ValueError("account code must not be blank")
    try:
        account_type = AccountType(data["type"])
    except ValueError as exc:
        raise ValueError(
            f"account {code}: unknown account type {data['type']!r}"
        ) from exc
    return AccountDef(
        code=code,
        name=str(data["name"]),
        account_type=account_type.value,
        parent_code=str(data["parent"]) if data.get("parent") else None,
    )


def parse_roles(data: dict[str, Any], known_codes: set[str]) -> AccountRoles:
    kwargs = {}
    for role in AccountRoles.__dataclass_fields__:
        code = str(data[role])
        if code not in known_codes:
            raise ValueError(f"role {role} refers to unknown account {code}")
        kwargs[role] = code
    return AccountRoles(**kwargs)


def parse_config(data: dict[str, Any], source_path: str | None = None) -> LedgerConfig:
    """
    Build a ``LedgerConfig`` from an already-loaded YAML mapping.

    Preconditions:
        - ``data`` has ``name``, ``currency``, ``accounts``, ``roles`` and
          ``payment_methods`` keys.
    """
    accounts = tuple(parse_account(a) for a in data["accounts"])
    codes = [a.code for a in accounts]
    duplicates = sorted({c for c in codes if codes.count(c) > 1})
    if duplicates:
        raise ValueError(f"duplicate account codes: {', '.join(duplicates)}")
    known = set(codes)

    roles = parse_roles(data["roles"], known)

    methods_data = data["payment_methods"]
    default_account = str(methods_data["default"])
    methods = {
        str(name): str(code)
        for name, code in (methods_data.get("methods") or {}).items()
    }
    for code in [default_account, *methods.values()]:
        if code not in known:
            raise ValueError(f"payment method maps to unknown account {code}")

    cash_accounts = tuple(str(c) for c in data.get("cash_accounts") or (roles.cash, roles.bank))
    for code in cash_accounts:
        if code not in known:
            raise ValueError(f"cash account {code} is not a configured account")

    tolerance = parse_decimal(data.get("tolerance", "0.01"), "tolerance")
    if tolerance < 0:
        raise ValueError(f"tolerance must not be negative, got {tolerance}")

    grace_days = int(data.get("grace_days", 0))
    if grace_days < 0:
        raise ValueError(f"grace_days must not be negative, got {grace_days}")

    db_data = data.get("database") or {}
    log_data = data.get("logging") or {}

    return LedgerConfig(
        name=str(data["name"]),
        version=int(data.get("version", 1)),
        currency=str(data["currency"]),
        tolerance=tolerance,
        database=DatabaseConfig(
            url=str(db_data.get("url", DatabaseConfig.url)),
            echo=bool(db_data.get("echo", False)),
        ),
        logging=LoggingConfig(level=str(log_data.get("level", "INFO")).upper()),
        roles=roles,
        payment_methods=methods,
        default_payment_account=default_account,
        cash_accounts=cash_accounts,
        accounts=accounts,
        checksum=compute_checksum(data),
        grace_days=grace_days,
        source_path=source_path,
    )


def load_config(path: Path | str) -> LedgerConfig:
    """Load and parse one configuration file."""
    path = Path(path)
    return parse_config(load_yaml_file(path), source_path=str(path))
