from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from trade_logbook.exceptions import CrawlAborted, RemoteAPIError, ThrottleLimitExceeded
from trade_logbook.models import Event
from trade_logbook.provider import LogSource
from trade_logbook.rate_limit import RateGate

logger = logging.getLogger(__name__)

STOP_COMPLETE = "complete"  # oldest event reached `from`
STOP_EXHAUSTED = "exhausted"  # a page came back empty
STOP_PAGE_BUDGET = "page_budget"
STOP_EVENT_BUDGET = "event_budget"
STOP_ERROR = "error"


@dataclass
class CrawlResult:
    from_ts: int
    to_ts: int
    events: list[Event] = field(default_factory=list)
    next_cursor_to: Optional[int] = None
    pages: int = 0
    stop_reason: str = STOP_COMPLETE
    last_status: Optional[int] = None

    @property
    def complete(self) -> bool:
        return self.next_cursor_to is None

    def as_json(self) -> dict[str, Any]:
        return {
            "from": self.from_ts,
            "to": self.to_ts,
            "fetched": len(self.events),
            "next_cursor_to": self.next_cursor_to,
            "pages": self.pages,
            "stop_reason": self.stop_reason,
            "last_status": self.last_status,
        }


class Crawler:
    """
    Walks the remote log backward from a `to` cursor in pages, each page bounded
    below by the fixed `from`. Stops on an empty page, when the oldest event
    reaches `from`, or on the page/event budget (leaving a resumable cursor).
    """

    def __init__(
        self,
        source: LogSource,
        gate: RateGate,
        *,
        max_pages: int = 60,
        max_events: int = 50_000,
        courtesy_pause_s: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_pages <= 0 or max_events <= 0:
            raise ValueError("Crawl budgets must be positive.")
        self.source = source
        self.gate = gate
        self.max_pages = int(max_pages)
        self.max_events = int(max_events)
        self.courtesy_pause_s = float(courtesy_pause_s)
        self._sleep = sleep

    async def crawl(self, from_ts: int, to_ts: int, resume_cursor_to: Optional[int] = None) -> CrawlResult:
        from_ts, to_ts = int(from_ts), int(to_ts)
        cursor = int(resume_cursor_to) if resume_cursor_to is not None else to_ts
        result = CrawlResult(from_ts=from_ts, to_ts=to_ts)
        if cursor < from_ts:
            return result
        if resume_cursor_to is not None:
            logger.info("Resuming crawl [%s, %s] from cursor %s", from_ts, to_ts, cursor)

        while True:
            try:
                page = await self.gate.call(
                    lambda c=cursor: self.source.fetch_page(from_ts, c),
                    label=f"log page to={cursor}",
                )
            except (RemoteAPIError, ThrottleLimitExceeded) as e:
                result.next_cursor_to = cursor
                result.stop_reason = STOP_ERROR
                code = getattr(e, "code", None)
                message = getattr(e, "message", None) or str(e)
                logger.warning("Crawl [%s, %s] aborted at cursor %s after %s page(s): %s", from_ts, to_ts, cursor, result.pages, e)
                raise CrawlAborted(code, message, partial=result) from e

            result.pages += 1
            result.last_status = page.http_status
            entries = sorted(
                (e for e in page.events if e.timestamp <= cursor),
                key=lambda e: (e.timestamp, e.id),
                reverse=True,
            )
            if not entries:
                result.next_cursor_to = None
                result.stop_reason = STOP_EXHAUSTED
                break

            result.events.extend(entries)
            oldest = entries[-1].timestamp
            if oldest <= from_ts:
                result.next_cursor_to = None
                result.stop_reason = STOP_COMPLETE
                break

            cursor = oldest - 1
            if result.pages >= self.max_pages:
                result.next_cursor_to = cursor
                result.stop_reason = STOP_PAGE_BUDGET
                break
            if len(result.events) >= self.max_events:
                result.next_cursor_to = cursor
                result.stop_reason = STOP_EVENT_BUDGET
                break

            if self.courtesy_pause_s > 0:
                await self._sleep(self.courtesy_pause_s)

        if result.complete:
            logger.info("Crawl [%s, %s] complete: %s event(s) in %s page(s)", from_ts, to_ts, len(result.events), result.pages)
        else:
            logger.info(
                "Crawl [%s, %s] paused (%s) at cursor %s: %s event(s) in %s page(s)",
                from_ts,
                to_ts,
                result.stop_reason,
                result.next_cursor_to,
                len(result.events),
                result.pages,
            )
        return result
