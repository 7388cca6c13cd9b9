from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from conftest import trade
from trade_logbook.cache import LogbookCache
from trade_logbook.cli import app, format_summary
from trade_logbook.config import LogbookConfig
from trade_logbook.models import EventKind, WindowSummary

runner = CliRunner()


@pytest.fixture()
def db_url(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'logbook.db'}"
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("LOGBOOK_DATABASE_URL", url)
    monkeypatch.setenv("UI_TIMEZONE", "UTC")
    monkeypatch.setenv("TORN_API_KEY", "")
    return url


def _seed(url: str) -> LogbookCache:
    cache = LogbookCache.from_config(LogbookConfig(database_url=url))
    cache.logs.add(
        [
            trade("b1", 1_000, EventKind.BUY, shares=10, price=2.0),
            trade("s1", 2_000, EventKind.SELL, shares=10, price=3.0),
            trade("s2", 3_000, EventKind.SELL, stock="2", shares=1, price=50.0),
        ]
    )
    cache.coverage.extend(0, 5_000)
    return cache


def test_help():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "pull" in result.stdout
    assert "override" in result.stdout


def test_pull_requires_api_key(db_url):
    result = runner.invoke(app, ["pull"])
    assert result.exit_code == 2


def test_show_json_offline(db_url):
    _seed(db_url)
    result = runner.invoke(app, ["show", "--from", "0", "--to", "5000", "--json"])
    assert result.exit_code == 0, result.output
    rows = json.loads(result.stdout)
    assert [r["id"] for r in rows] == ["s2", "s1", "b1"]
    assert rows[1]["cost_basis"] == pytest.approx(20.0)
    assert rows[0]["needs_manual_input"] is True


def test_show_table(db_url):
    _seed(db_url)
    result = runner.invoke(app, ["show", "--from", "0", "--to", "5000"])
    assert result.exit_code == 0, result.output
    assert "1970-01-01 00:16" in result.stdout
    assert "1 sell(s) need a buy price" in result.stdout


def test_show_rejects_inverted_window(db_url):
    result = runner.invoke(app, ["show", "--from", "5000", "--to", "0"])
    assert result.exit_code != 0


def test_override_roundtrip(db_url):
    _seed(db_url)
    result = runner.invoke(app, ["override", "set", "s2", "45"])
    assert result.exit_code == 0, result.output
    assert "45.00" in result.stdout

    result = runner.invoke(app, ["show", "--from", "0", "--to", "5000", "--json"])
    s2 = json.loads(result.stdout)[0]
    assert s2["manual_override_used"] is True
    assert s2["cost_basis"] == pytest.approx(45.0)

    result = runner.invoke(app, ["override", "set", "s2", "0"])
    assert "cleared" in result.stdout

    runner.invoke(app, ["override", "set", "s1", "1"])
    result = runner.invoke(app, ["override", "clear", "s1"])
    assert "Cleared buy price for s1" in result.stdout
    result = runner.invoke(app, ["override", "clear-all", "--yes"])
    assert "Cleared 0 manual buy price(s)." in result.stdout


def test_status_and_clear_cache(db_url):
    _seed(db_url)
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0, result.output
    status = json.loads(result.stdout)
    assert status["events"] == 3
    assert status["coverage"] == [[0, 5000]]

    result = runner.invoke(app, ["clear-cache", "--yes"])
    assert json.loads(result.stdout) == {"events_deleted": 3}
    assert json.loads(runner.invoke(app, ["status"]).stdout)["events"] == 0


def test_format_summary():
    text = format_summary(WindowSummary(total_cost_basis=400, total_net=599, total_profit=199, total_fees=1, sell_count=1))
    assert text == "Total buy $400 | Total sell $599 | Profit $199 | Fees $1"
