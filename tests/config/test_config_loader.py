"""
Tests for configuration loading.

Covers:
- The shipped default set (chart, roles, payment methods)
- parse_config validation -- missing keys and bad values
- get_active_config -- set lookup and the audit log line
"""

from __future__ import annotations

import copy
from decimal import Decimal
from pathlib import Path

import pytest
import yaml

from ledger_config import get_active_config, load_config
from ledger_config.loader import compute_checksum, parse_config

DEFAULT_SET = Path(__file__).resolve().parents[2] / "ledger_config" / "sets" / "default.yaml"


@pytest.fixture
def raw():
    with open(DEFAULT_SET) as f:
        return yaml.safe_load(f)


# =========================================================================
# 1. Default set
# =========================================================================


class TestDefaultSet:
    def test_loads(self, config):
        assert config.name == "default"
        assert config.currency == "USD"
        assert config.tolerance == Decimal("0.01")
        assert config.grace_days == 5
        assert config.roles.accounts_receivable == "1100"
        assert config.roles.deferred_income == "2200"
        assert set(config.cash_accounts) == {"1000", "1001", "1002", "1003", "1004", "1008"}

    @pytest.mark.parametrize(
        "method, code",
        [
            ("Cash", "1002"),
            ("bank transfer", "1001"),
            ("  Ecocash ", "1003"),
            ("Innbucks", "1004"),
            ("Petty Cash", "1008"),
            ("Cheque", "1000"),
            (None, "1000"),
            ("", "1000"),
        ],
    )
    def test_cash_account_for(self, config, method, code):
        assert config.cash_account_for(method) == code

    def test_payment_methods_read_only(self, config):
        with pytest.raises(TypeError):
            config.payment_methods["Cash"] = "1000"

    def test_account_lookup(self, config):
        assert config.account("4300").name == "Forfeited Deposit Income"
        assert config.account("9999") is None

    def test_checksum_is_stable(self, raw):
        assert compute_checksum(raw) == compute_checksum(copy.deepcopy(raw))
        changed = copy.deepcopy(raw)
        changed["tolerance"] = "0.02"
        assert compute_checksum(changed) != compute_checksum(raw)


# =========================================================================
# 2. Validation
# =========================================================================


class TestMissingKeys:
    @pytest.mark.parametrize("key", ["name", "currency", "accounts", "roles", "payment_methods"])
    def test_required_top_level_key(self, raw, key):
        del raw[key]
        with pytest.raises(KeyError):
            parse_config(raw)

    def test_required_role(self, raw):
        del raw["roles"]["deferred_income"]
        with pytest.raises(KeyError):
            parse_config(raw)

    def test_optional_keys_default(self, raw):
        for key in ("tolerance", "grace_days", "database", "logging", "cash_accounts"):
            raw.pop(key)
        config = parse_config(raw)
        assert config.tolerance == Decimal("0.01")
        assert config.grace_days == 0
        assert config.database.url == "sqlite:///:memory:"
        assert config.logging.level == "INFO"
        assert config.cash_accounts == ("1000", "1001")


class TestBadValues:
    def test_unknown_account_type(self, raw):
        raw["accounts"][0]["type"] = "contra"
        with pytest.raises(ValueError, match="unknown account type"):
            parse_config(raw)

    def test_duplicate_code(self, raw):
        raw["accounts"].append({"code": "1000", "name": "Again", "type": "asset"})
        with pytest.raises(ValueError, match="duplicate"):
            parse_config(raw)

    def test_blank_code(self, raw):
        raw["accounts"][0]["code"] = "  "
        with pytest.raises(ValueError):
            parse_config(raw)

    def test_role_names_unknown_account(self, raw):
        raw["roles"]["cash"] = "1999"
        with pytest.raises(ValueError, match="role cash"):
            parse_config(raw)

    def test_payment_method_names_unknown_account(self, raw):
        raw["payment_methods"]["methods"]["Swipe"] = "1999"
        with pytest.raises(ValueError):
            parse_config(raw)

    def test_cash_account_not_in_chart(self, raw):
        raw["cash_accounts"].append("1999")
        with pytest.raises(ValueError):
            parse_config(raw)

    @pytest.mark.parametrize("tolerance", ["-0.01", "abc", "NaN"])
    def test_bad_tolerance(self, raw, tolerance):
        raw["tolerance"] = tolerance
        with pytest.raises(ValueError):
            parse_config(raw)

    def test_negative_grace_days(self, raw):
        raw["grace_days"] = -1
        with pytest.raises(ValueError):
            parse_config(raw)


# =========================================================================
# 3. get_active_config
# =========================================================================


class TestGetActiveConfig:
    def test_named_set_from_directory(self, raw, tmp_path):
        raw["name"] = "harare"
        raw["currency"] = "ZWG"
        (tmp_path / "harare.yaml").write_text(yaml.safe_dump(raw))

        config = get_active_config("harare", config_dir=tmp_path)
        assert config.name == "harare"
        assert config.currency == "ZWG"
        assert config.source_path == str(tmp_path / "harare.yaml")

    def test_missing_set(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config("nowhere", config_dir=tmp_path)

    def test_load_config_matches_active(self):
        assert load_config(DEFAULT_SET) == get_active_config()

    def test_logs_identity(self, captured_logs):
        config = get_active_config()
        (record,) = [r for r in captured_logs() if r["message"] == "ledger_config_loaded"]
        assert record["config_name"] == "default"
        assert record["checksum"] == config.checksum
        assert record["logger"] == "ledger_kernel.config"
