from __future__ import annotations

__all__ = [
    "LogbookCache",
    "WindowResult",
    "LogbookConfig",
    "load_logbook_config",
    "CoverageTracker",
    "LogStore",
    "ManualOverrideMap",
    "RateGate",
    "Crawler",
    "CrawlResult",
    "LogSource",
    "Page",
    "TornLogSource",
    "DurableStore",
    "MemoryStore",
    "SqlStore",
    "Event",
    "EventKind",
    "LedgerRow",
    "Lot",
    "replay",
    "opening_lots",
    "sell_amounts",
    "summarize",
    "LogbookError",
    "RemoteAPIError",
    "CrawlAborted",
    "CacheBusyError",
]

from trade_logbook.cache import LogbookCache, WindowResult
from trade_logbook.config import LogbookConfig, load_logbook_config
from trade_logbook.coverage import CoverageTracker
from trade_logbook.crawler import Crawler, CrawlResult
from trade_logbook.exceptions import CacheBusyError, CrawlAborted, LogbookError, RemoteAPIError
from trade_logbook.ledger import opening_lots, replay, sell_amounts, summarize
from trade_logbook.log_store import LogStore
from trade_logbook.models import Event, EventKind, LedgerRow, Lot
from trade_logbook.overrides import ManualOverrideMap
from trade_logbook.provider import LogSource, Page, TornLogSource
from trade_logbook.rate_limit import RateGate
from trade_logbook.store import DurableStore, MemoryStore, SqlStore
