"""Tests for the command line entry point."""

import json
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from typer.testing import CliRunner

from spendflow.app import app, to_jsonable
from spendflow.errors import ErrorKind

runner = CliRunner()


@pytest.fixture
def config_file(temp_dir):
    """A config file pointing at a temporary store, logging to a file."""
    path = temp_dir / "config.toml"
    path.write_text("""
[plaid]
client_id = ''
secret = ''

[database]
path = 'cli.db'

[logging]
level = 'debug'
file = 'spendflow.log'
""")
    return path


def invoke(config_file, *args):
    result = runner.invoke(app, ["--config", str(config_file), *args])
    return result, json.loads(result.stdout)


class TestToJsonable:
    """Tests for to_jsonable."""

    def test_converts_nested_values(self):
        """Test dataclasses, decimals, enums and dates."""

        @dataclass
        class Row:
            amount: Decimal
            kind: ErrorKind
            when: date
            tags: tuple

        value = to_jsonable(
            {"rows": [Row(Decimal("1.50"), ErrorKind.STORE, date(2024, 3, 1), ("a",))]}
        )
        assert value == {
            "rows": [{"amount": "1.50", "kind": "store", "when": "2024-03-01", "tags": ["a"]}]
        }

    def test_datetime(self):
        """Test that datetimes keep their offset."""
        when = datetime(2024, 3, 1, 12, tzinfo=timezone.utc)
        assert to_jsonable(when) == "2024-03-01T12:00:00+00:00"


class TestCommands:
    """Tests for CLI commands."""

    def test_categories(self, config_file):
        """Test listing categories on an empty store."""
        result, body = invoke(config_file, "categories")
        assert result.exit_code == 0
        assert body["ok"] is True
        assert "Groceries" in body["data"]

    def test_dashboard_empty_month(self, config_file):
        """Test the dashboard of a month without data."""
        result, body = invoke(config_file, "dashboard", "--month", "2024-03")
        assert result.exit_code == 0
        assert body["data"]["month"] == "2024-03"
        assert body["data"]["totals"]["spending"] == "0.00"
        assert body["data"]["graph"] == {"nodes": [], "edges": []}

    def test_dashboard_invalid_month(self, config_file):
        """Test that validation failures exit non-zero."""
        result, body = invoke(config_file, "dashboard", "--month", "March")
        assert result.exit_code == 1
        assert body["ok"] is False
        assert body["error"]["kind"] == "validation"

    def test_override_unknown_transaction(self, config_file):
        """Test overriding a transaction that does not exist."""
        result, body = invoke(config_file, "override", "txn-404", "Coffee")
        assert result.exit_code == 1
        assert body["error"] == {"kind": "not_found", "message": "Transaction not found"}

    def test_rule_created(self, config_file):
        """Test creating a contains rule."""
        result, body = invoke(config_file, "rule", "Uber", "Transport")
        assert result.exit_code == 0
        assert body["data"]["rule"]["pattern"] == "Uber"
        assert body["data"]["rule"]["match_type"] == "contains"
        assert body["data"]["applied"] == 0

    def test_link_token_without_credentials(self, config_file):
        """Test that provider commands need credentials."""
        result, body = invoke(config_file, "link-token")
        assert result.exit_code == 1
        assert body["error"]["kind"] == "config"

    def test_invalid_config(self, temp_dir):
        """Test that a broken config file is reported."""
        path = temp_dir / "config.toml"
        path.write_text("[sync]\npage_size = 0\n")
        result, body = invoke(path, "categories")
        assert result.exit_code == 1
        assert body["error"]["kind"] == "config"

    def test_logs_to_configured_file(self, config_file, temp_dir):
        """Test that the logging section is honored."""
        invoke(config_file, "dashboard", "--month", "March")
        log_text = (temp_dir / "spendflow.log").read_text()
        assert "dashboard rejected (validation)" in log_text
