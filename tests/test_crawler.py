from __future__ import annotations

import pytest

from conftest import FakeSource, trade
from trade_logbook.crawler import STOP_COMPLETE, STOP_ERROR, STOP_EVENT_BUDGET, STOP_EXHAUSTED, STOP_PAGE_BUDGET, Crawler
from trade_logbook.exceptions import CrawlAborted, RemoteAPIError, ThrottledError
from trade_logbook.models import EventKind
from trade_logbook.provider import Page
from trade_logbook.rate_limit import RateGate


def _crawler(source, fake_sleep, **kw) -> Crawler:
    gate = RateGate(0.0001, sleep=fake_sleep, rng=lambda: 0.0, **kw.pop("gate_kw", {}))
    return Crawler(source, gate, sleep=fake_sleep, **kw)


def _events(*timestamps):
    return [trade(f"e{ts}", ts, EventKind.BUY) for ts in timestamps]


@pytest.mark.asyncio
async def test_walks_backward_until_from(fake_sleep):
    source = FakeSource(_events(100, 200, 300, 400, 500), page_size=2)
    res = await _crawler(source, fake_sleep).crawl(150, 500)
    assert res.complete
    assert res.stop_reason == STOP_EXHAUSTED
    assert [e.timestamp for e in res.events] == [500, 400, 300, 200]
    assert source.calls == [(150, 500), (150, 399), (150, 199)]
    # Courtesy pause between pages, not after the last one.
    assert fake_sleep.calls.count(2.0) == 2


@pytest.mark.asyncio
async def test_stops_when_oldest_reaches_from(fake_sleep):
    source = FakeSource(_events(100, 200, 300), page_size=10)
    res = await _crawler(source, fake_sleep).crawl(100, 300)
    assert res.stop_reason == STOP_COMPLETE
    assert res.next_cursor_to is None
    assert len(source.calls) == 1


@pytest.mark.asyncio
async def test_empty_page_is_complete(fake_sleep):
    source = FakeSource([])
    res = await _crawler(source, fake_sleep).crawl(0, 1000)
    assert res.complete
    assert res.pages == 1
    assert res.events == []


@pytest.mark.asyncio
async def test_page_budget_leaves_cursor(fake_sleep):
    source = FakeSource(_events(100, 200, 300, 400), page_size=1)
    res = await _crawler(source, fake_sleep, max_pages=2).crawl(0, 1000)
    assert not res.complete
    assert res.stop_reason == STOP_PAGE_BUDGET
    assert res.next_cursor_to == 299
    assert [e.timestamp for e in res.events] == [400, 300]


@pytest.mark.asyncio
async def test_event_budget_leaves_cursor(fake_sleep):
    source = FakeSource(_events(100, 200, 300, 400, 500), page_size=2)
    res = await _crawler(source, fake_sleep, max_events=3).crawl(0, 1000)
    assert res.stop_reason == STOP_EVENT_BUDGET
    assert len(res.events) == 4
    assert res.next_cursor_to == 199


@pytest.mark.asyncio
async def test_resume_never_fetches_past_cursor(fake_sleep):
    source = FakeSource(_events(100, 200, 300, 400), page_size=10)
    res = await _crawler(source, fake_sleep).crawl(0, 1000, resume_cursor_to=250)
    assert source.calls[0] == (0, 250)
    assert all(e.timestamp <= 250 for e in res.events)
    assert res.to_ts == 1000


@pytest.mark.asyncio
async def test_ignores_entries_newer_than_cursor(fake_sleep):
    class SloppySource(FakeSource):
        async def fetch_page(self, from_ts, to_ts):
            self.calls.append((from_ts, to_ts))
            hits = sorted((e for e in self.events if e.timestamp >= from_ts), key=lambda e: e.timestamp, reverse=True)
            return Page(events=hits)

    source = SloppySource(_events(100, 200, 300))
    res = await _crawler(source, fake_sleep).crawl(0, 1000, resume_cursor_to=250)
    assert [e.timestamp for e in res.events] == [200, 100]


@pytest.mark.asyncio
async def test_cursor_below_from_fetches_nothing(fake_sleep):
    source = FakeSource(_events(100))
    res = await _crawler(source, fake_sleep).crawl(500, 1000, resume_cursor_to=400)
    assert res.complete
    assert source.calls == []


@pytest.mark.asyncio
async def test_remote_error_aborts_with_partial(fake_sleep):
    source = FakeSource(_events(100, 200, 300), page_size=1, errors={1: RemoteAPIError(2, "Incorrect key")})
    with pytest.raises(CrawlAborted) as exc:
        await _crawler(source, fake_sleep).crawl(0, 1000)
    partial = exc.value.partial
    assert exc.value.code == 2
    assert partial.stop_reason == STOP_ERROR
    assert [e.timestamp for e in partial.events] == [300]
    assert partial.next_cursor_to == 299


@pytest.mark.asyncio
async def test_throttle_is_retried_inside_crawl(fake_sleep):
    source = FakeSource(_events(100), errors={0: ThrottledError("HTTP 429", http_status=429)})
    res = await _crawler(source, fake_sleep).crawl(0, 1000)
    assert res.complete
    assert [e.timestamp for e in res.events] == [100]
    assert source.calls == [(0, 1000), (0, 1000), (0, 99)]


@pytest.mark.asyncio
async def test_throttle_limit_aborts(fake_sleep):
    source = FakeSource(_events(100), errors={0: ThrottledError("HTTP 429", http_status=429)})
    crawler = _crawler(source, fake_sleep, gate_kw={"max_throttle_retries": 0})
    with pytest.raises(CrawlAborted) as exc:
        await crawler.crawl(0, 1000)
    assert exc.value.partial.next_cursor_to == 1000
    assert exc.value.partial.events == []


def test_budgets_must_be_positive(fake_sleep):
    with pytest.raises(ValueError):
        _crawler(FakeSource([]), fake_sleep, max_pages=0)
