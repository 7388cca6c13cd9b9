from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, Field

from trade_logbook.config import LogbookConfig
from trade_logbook.coverage import CoverageTracker, Interval
from trade_logbook.crawler import Crawler, CrawlResult
from trade_logbook.exceptions import CacheBusyError, CrawlAborted, LogbookError
from trade_logbook.ledger import opening_lots, replay, summarize
from trade_logbook.log_store import LogStore
from trade_logbook.models import LedgerRow, ManualOverride, ResumeCursor, WindowSummary
from trade_logbook.overrides import ManualOverrideMap
from trade_logbook.provider import LogSource, TornLogSource
from trade_logbook.rate_limit import RateGate
from trade_logbook.store import DurableStore, SqlStore, StoreKeys
from trade_logbook.timeutil import DAY_SECONDS, unix_now

logger = logging.getLogger(__name__)


class WindowResult(BaseModel):
    from_ts: int
    to_ts: int
    rows: list[LedgerRow] = Field(default_factory=list)
    summary: WindowSummary = Field(default_factory=WindowSummary)
    missing: list[tuple[int, int]] = Field(default_factory=list)
    fetched: int = 0
    crawls: int = 0
    partial: bool = False
    last_status: Optional[int] = None
    throttle: dict[str, Any] = Field(default_factory=dict)


class LogbookCache:
    """
    Incremental log cache plus ledger view over one durable store.

    All state lives in the injected store; instances share nothing else. Only one
    pull may run at a time per instance (a second one raises CacheBusyError).
    In-flight network waits cannot be forcibly aborted; a crawl is bounded only by
    its page/event budget.
    """

    def __init__(
        self,
        store: DurableStore,
        source: Optional[LogSource] = None,
        *,
        config: Optional[LogbookConfig] = None,
        gate: Optional[RateGate] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], int] = unix_now,
    ):
        self.config = config or LogbookConfig()
        cfg = self.config
        self.store = store
        self.keys = StoreKeys(cfg.key_prefix)
        self.coverage = CoverageTracker(store, self.keys.coverage)
        self.logs = LogStore(store, self.keys.logs, cap=cfg.log_store_cap)
        self.overrides = ManualOverrideMap(store, self.keys.manual, clock=clock)
        self.source = source
        self.gate = gate or RateGate(
            cfg.min_interval_s,
            backoff_base_s=cfg.backoff_base_s,
            backoff_cap_s=cfg.backoff_cap_s,
            jitter_s=cfg.backoff_jitter_s,
            max_throttle_retries=cfg.max_throttle_retries,
            sleep=sleep,
        )
        self.crawler: Optional[Crawler] = None
        if source is not None:
            self.crawler = Crawler(
                source,
                self.gate,
                max_pages=cfg.max_pages_per_pull,
                max_events=cfg.max_events_per_pull,
                courtesy_pause_s=cfg.courtesy_pause_s,
                sleep=sleep,
            )
        self._busy = False

    @classmethod
    def from_config(cls, config: LogbookConfig, *, source: Optional[LogSource] = None) -> "LogbookCache":
        store = SqlStore.from_url(config.database_url)
        if source is None and (config.api_key or "").strip():
            source = TornLogSource(api_key=config.api_key or "", api_base=config.api_base, timeout_s=config.request_timeout_s)
        return cls(store, source, config=config)

    @property
    def busy(self) -> bool:
        return self._busy

    # ------------------------------------------------------------------ cursor

    def load_cursor(self) -> Optional[ResumeCursor]:
        raw = self.store.get(self.keys.cursor, None)
        if raw is None:
            return None
        cur = ResumeCursor.from_dict(raw)
        if cur is None:
            logger.warning("Resume cursor under %s is malformed; clearing it.", self.keys.cursor)
            self.store.delete(self.keys.cursor)
        return cur

    def _save_cursor(self, cursor: ResumeCursor) -> None:
        self.store.set(self.keys.cursor, cursor.to_dict())

    def _clear_cursor(self) -> None:
        self.store.delete(self.keys.cursor)

    # ------------------------------------------------------------ instruments

    def instrument_labels(self) -> dict[str, str]:
        raw = self.store.get(self.keys.instruments, {})
        if not isinstance(raw, dict):
            return {}
        out: dict[str, str] = {}
        for sid, info in raw.items():
            if isinstance(info, dict) and info.get("acronym"):
                out[str(sid)] = str(info["acronym"])
        return out

    async def refresh_instruments(self) -> dict[str, str]:
        """Fetch the instrument directory; a failure keeps the stored copy."""
        if self.source is None:
            return self.instrument_labels()
        source = self.source
        try:
            instruments = await self.gate.call(source.fetch_instruments, label="instrument directory")
        except LogbookError as e:
            logger.warning("Instrument directory fetch failed; using stored labels (%s)", e)
            return self.instrument_labels()
        if instruments:
            self.store.set(self.keys.instruments, {k: v.to_dict() for k, v in instruments.items()})
        return self.instrument_labels()

    # ------------------------------------------------------------------- pull

    def _fetch_start(self, from_ts: int, to_ts: int, cursor: Optional[ResumeCursor] = None) -> int:
        """
        Extend the first fetch backward to seed context when nothing is cached yet.
        A pending first-run crawl keeps its own start so it can still be resumed
        after `to` has moved on.
        """
        if self.coverage.intervals():
            return from_ts
        cfg = self.config
        depth = min(cfg.bootstrap_hardcap_days * DAY_SECONDS, int((to_ts - from_ts) * cfg.bootstrap_multiplier))
        start = min(from_ts, to_ts - depth)
        if cursor is not None and cursor.cursor_to is not None and cursor.to_ts <= to_ts:
            start = min(start, cursor.from_ts)
        return start

    def _plan(self, missing: list[Interval], cursor: Optional[ResumeCursor]) -> list[tuple[int, int, Optional[int]]]:
        """
        Crawl order: the gap holding a persisted cursor's range comes first
        (resume below the cursor, then what is newer than the cursor's `to`, then
        what is older than its `from`), then the remaining gaps newest first.
        """
        first: list[tuple[int, int, Optional[int]]] = []
        rest: list[tuple[int, int, Optional[int]]] = []
        for a, b in sorted(missing, key=lambda x: x[0], reverse=True):
            if (
                cursor is not None
                and cursor.cursor_to is not None
                and not first
                and a <= cursor.from_ts <= cursor.to_ts <= b
            ):
                first.append((cursor.from_ts, cursor.to_ts, cursor.cursor_to))
                if cursor.to_ts < b:
                    first.append((cursor.to_ts + 1, b, None))
                if a < cursor.from_ts:
                    first.append((a, cursor.from_ts - 1, None))
            else:
                rest.append((a, b, None))
        return first + rest

    def _absorb(self, result: CrawlResult) -> int:
        # Log store first, coverage second: coverage must never claim data the log store lacks.
        added = self.logs.add(result.events)
        cur = self.load_cursor()
        if result.complete:
            self.coverage.extend(result.from_ts, result.to_ts)
            if cur is not None and cur.matches(result.from_ts, result.to_ts):
                self._clear_cursor()
        else:
            self._save_cursor(ResumeCursor(result.from_ts, result.to_ts, result.next_cursor_to))
        return added.inserted

    async def get_window(self, from_ts: int, to_ts: int) -> WindowResult:
        """
        Rows for [from_ts, to_ts]: fetch whatever part of the range is not yet
        covered, then replay stored history before the window (context) followed
        by the window itself.
        """
        from_ts, to_ts = int(from_ts), int(to_ts)
        if from_ts > to_ts:
            raise ValueError(f"Invalid window: from {from_ts} is after to {to_ts}.")
        if self._busy:
            raise CacheBusyError("A pull is already in progress.")
        self._busy = True
        try:
            cursor = self.load_cursor()
            fetch_from = self._fetch_start(from_ts, to_ts, cursor)
            missing = self.coverage.missing(fetch_from, to_ts)
            result = WindowResult(from_ts=from_ts, to_ts=to_ts, missing=missing)
            if missing:
                crawler = self.crawler
                if crawler is None:
                    raise LogbookError("Range is not cached and no log source is configured.")
                await self._fill(crawler, missing, cursor, result)
                # The directory is fetched alongside a pull only; a covered window stays offline.
                if not self.instrument_labels():
                    await self.refresh_instruments()
            rows = self.rows_for_window(from_ts, to_ts)
            result.rows = rows
            result.summary = summarize(rows)
            result.throttle = self.gate.stats.as_json()
            return result
        finally:
            self._busy = False

    async def _fill(
        self,
        crawler: Crawler,
        missing: list[Interval],
        cursor: Optional[ResumeCursor],
        result: WindowResult,
    ) -> None:
        for a, b, resume in self._plan(missing, cursor):
            try:
                crawl = await crawler.crawl(a, b, resume)
            except CrawlAborted as e:
                partial: CrawlResult = e.partial
                result.fetched += self._absorb(partial)
                result.crawls += 1
                raise
            result.crawls += 1
            result.fetched += self._absorb(crawl)
            result.last_status = crawl.last_status
            if not crawl.complete:
                result.partial = True
                break

    # ------------------------------------------------------------------- view

    def rows_for_window(self, from_ts: int, to_ts: int) -> list[LedgerRow]:
        """Rows from stored data only; never touches the network."""
        since = None
        if self.config.context_seconds is not None:
            since = int(from_ts) - int(self.config.context_seconds)
        context, window = self.logs.split(int(from_ts), int(to_ts), since=since)
        return replay(
            window,
            self.overrides.all(),
            opening=opening_lots(context),
            labels=self.instrument_labels(),
            fee_rate=self.config.fee_rate,
        )

    # ------------------------------------------------------------------ admin

    def set_override(self, event_id: str, price: Any) -> Optional[ManualOverride]:
        return self.overrides.set(event_id, price)

    def clear_override(self, event_id: str) -> bool:
        return self.overrides.clear(event_id)

    def clear_all_overrides(self) -> int:
        return self.overrides.clear_all()

    def clear_cache(self) -> dict[str, int]:
        """Drop cached logs, coverage and any resume cursor. Overrides are kept."""
        if self._busy:
            raise CacheBusyError("Cannot clear the cache while a pull is in progress.")
        n = self.logs.count()
        self.coverage.clear()
        self.logs.clear()
        self._clear_cursor()
        logger.info("Cleared %s cached event(s) and all coverage.", n)
        return {"events_deleted": n}

    def status(self) -> dict[str, Any]:
        first, last = self.logs.bounds()
        cur = self.load_cursor()
        return {
            "events": self.logs.count(),
            "first_ts": first,
            "last_ts": last,
            "coverage": [list(iv) for iv in self.coverage.intervals()],
            "cursor": cur.to_dict() if cur is not None else None,
            "overrides": len(self.overrides.all()),
            "busy": self._busy,
        }

    async def aclose(self) -> None:
        if self.source is not None:
            await self.source.aclose()
