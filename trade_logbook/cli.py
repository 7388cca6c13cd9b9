from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

import typer
from dotenv import load_dotenv

from trade_logbook.cache import LogbookCache, WindowResult
from trade_logbook.config import LogbookConfig, load_logbook_config
from trade_logbook.exceptions import CacheBusyError, LogbookError
from trade_logbook.ledger import summarize
from trade_logbook.models import LedgerRow, WindowSummary
from trade_logbook.money import format_money, format_number
from trade_logbook.timeutil import days_ago, format_ts, parse_timestamp, unix_now

app = typer.Typer(help="Trade logbook: cached log pulls and an average-cost ledger.", add_completion=False, no_args_is_help=True)
override_app = typer.Typer(help="Manual buy prices for sells with no cost basis in cached history.")
app.add_typer(override_app, name="override")

HEADERS = ("When", "Action", "Ticker", "Shares", "Price", "Gross", "Fee", "Net", "Buy", "Cost", "Profit", "Id")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load() -> LogbookConfig:
    load_dotenv()
    cfg, cfg_path = load_logbook_config()
    if cfg_path:
        typer.echo(f"Using config: {cfg_path}", err=True)
    return cfg


def _offline_cache(cfg: LogbookConfig) -> LogbookCache:
    return LogbookCache.from_config(cfg.model_copy(update={"api_key": None}))


def _window(days: float, start: Optional[str], end: Optional[str]) -> tuple[int, int]:
    to_ts = parse_timestamp(end) if end else unix_now()
    if to_ts is None:
        raise typer.BadParameter(f"Invalid --to: {end}")
    from_ts = parse_timestamp(start) if start else days_ago(days, now=to_ts)
    if from_ts is None:
        raise typer.BadParameter(f"Invalid --from: {start}")
    if from_ts > to_ts:
        raise typer.BadParameter("--from must not be after --to")
    return from_ts, to_ts


def _row_cells(r: LedgerRow, tz_name: Optional[str]) -> tuple[str, ...]:
    flag = " (manual)" if r.manual_override_used else (" (needs buy price)" if r.needs_manual_input else "")
    return (
        format_ts(r.timestamp, tz_name=tz_name),
        r.action,
        r.ticker,
        format_number(r.shares, 0),
        format_number(r.price, 2),
        format_money(r.gross),
        format_money(r.fee),
        format_money(r.net),
        format_number(r.buy_price, 2),
        format_money(r.cost_basis),
        format_money(r.profit) + flag,
        r.id,
    )


def format_rows(rows: list[LedgerRow], *, tz_name: Optional[str] = None) -> str:
    if not rows:
        return "(no rows)"
    cells = [_row_cells(r, tz_name) for r in rows]
    widths = [max(len(h), *(len(c[i]) for c in cells)) for i, h in enumerate(HEADERS)]

    def line(values: tuple[str, ...]) -> str:
        return "  ".join(v.ljust(w) if i < 3 or i == len(values) - 1 else v.rjust(w) for i, (v, w) in enumerate(zip(values, widths)))

    out = [line(HEADERS), line(tuple("-" * w for w in widths))]
    out.extend(line(c) for c in cells)
    return "\n".join(out)


def format_summary(s: WindowSummary) -> str:
    parts = [
        f"Total buy {format_money(s.total_cost_basis)}",
        f"Total sell {format_money(s.total_net)}",
        f"Profit {format_money(s.total_profit)}",
        f"Fees {format_money(s.total_fees)}",
    ]
    if s.needs_manual_input:
        parts.append(f"{s.needs_manual_input} sell(s) need a buy price")
    return " | ".join(parts)


def _status_line(res: WindowResult) -> str:
    status = f"HTTP {res.last_status}" if res.last_status is not None else "cache only"
    msg = f"Synced {res.fetched} log(s) ({status}, {res.crawls} crawl(s))"
    if res.partial:
        msg += " - paused to respect rate limits; run pull again to continue"
    return msg + "."


async def _pull(cache: LogbookCache, from_ts: int, to_ts: int) -> WindowResult:
    try:
        return await cache.get_window(from_ts, to_ts)
    finally:
        await cache.aclose()


@app.command("pull")
def pull_cmd(
    days: float = typer.Option(7.0, help="Window length in days ending at --to (default now)"),
    start: Optional[str] = typer.Option(None, "--from", help="Window start (unix seconds or ISO datetime)"),
    end: Optional[str] = typer.Option(None, "--to", help="Window end (unix seconds or ISO datetime)"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table"),
):
    """Fetch whatever part of the window is not cached yet, then print the ledger."""
    cfg = _load()
    if not (cfg.api_key or "").strip():
        typer.echo("No API key configured; set TORN_API_KEY (or api_key in logbook.yaml).", err=True)
        raise typer.Exit(code=2)
    from_ts, to_ts = _window(days, start, end)
    cache = LogbookCache.from_config(cfg)
    try:
        res = asyncio.run(_pull(cache, from_ts, to_ts))
    except CacheBusyError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=2)
    except LogbookError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    if as_json:
        typer.echo(json.dumps(res.model_dump(), indent=2))
        return
    typer.echo(format_rows(res.rows, tz_name=cfg.timezone))
    typer.echo(format_summary(res.summary))
    typer.echo(_status_line(res))


@app.command("show")
def show_cmd(
    days: float = typer.Option(7.0, help="Window length in days ending at --to (default now)"),
    start: Optional[str] = typer.Option(None, "--from", help="Window start (unix seconds or ISO datetime)"),
    end: Optional[str] = typer.Option(None, "--to", help="Window end (unix seconds or ISO datetime)"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table"),
):
    """Print the ledger from cached logs only (no network)."""
    cfg = _load()
    from_ts, to_ts = _window(days, start, end)
    cache = _offline_cache(cfg)
    rows = cache.rows_for_window(from_ts, to_ts)
    if as_json:
        typer.echo(json.dumps([r.model_dump() for r in rows], indent=2))
        return
    typer.echo(format_rows(rows, tz_name=cfg.timezone))
    typer.echo(format_summary(summarize(rows)))


@app.command("status")
def status_cmd():
    """Cached event count, coverage intervals, pending cursor and override count."""
    cfg = _load()
    cache = _offline_cache(cfg)
    typer.echo(json.dumps(cache.status(), indent=2))


@app.command("clear-cache")
def clear_cache_cmd(yes: bool = typer.Option(False, "--yes", help="Skip confirmation")):
    """Delete all cached logs, coverage and the resume cursor (no undo)."""
    if not yes:
        typer.confirm("Clear all cached logs and coverage?", abort=True)
    cfg = _load()
    cache = _offline_cache(cfg)
    res = cache.clear_cache()
    typer.echo(json.dumps(res, indent=2))


@override_app.command("set")
def override_set_cmd(
    event_id: str = typer.Argument(..., help="SELL log id"),
    price: float = typer.Argument(..., help="Buy price per share"),
):
    cfg = _load()
    cache = _offline_cache(cfg)
    ov = cache.set_override(event_id, price)
    if ov is None:
        typer.echo(f"Price must be a positive number; cleared any override for {event_id}.")
        return
    typer.echo(f"Buy price for {event_id} set to {format_number(ov.buy_price, 2)}.")


@override_app.command("clear")
def override_clear_cmd(event_id: str = typer.Argument(..., help="SELL log id")):
    cfg = _load()
    cache = _offline_cache(cfg)
    if cache.clear_override(event_id):
        typer.echo(f"Cleared buy price for {event_id}.")
    else:
        typer.echo(f"No buy price stored for {event_id}.")


@override_app.command("clear-all")
def override_clear_all_cmd(yes: bool = typer.Option(False, "--yes", help="Skip confirmation")):
    if not yes:
        typer.confirm("Clear all manual buy prices?", abort=True)
    cfg = _load()
    cache = _offline_cache(cfg)
    n = cache.clear_all_overrides()
    typer.echo(f"Cleared {n} manual buy price(s).")


if __name__ == "__main__":
    app()
