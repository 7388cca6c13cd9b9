from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from trade_logbook.models import Event, EventKind
from trade_logbook.provider import Instrument, LogSource, Page
from trade_logbook.store import MemoryStore, SqlStore


def trade(event_id: str, ts: int, kind: EventKind, stock: str = "1", shares: float = 10, price: float = 100.0) -> Event:
    return Event(
        id=event_id,
        timestamp=ts,
        kind=kind,
        category="Stocks",
        instrument=stock,
        shares=float(shares),
        price=float(price),
        gross=float(shares) * float(price),
        type_code=5510 if kind == EventKind.BUY else 5511,
    )


class FakeSource(LogSource):
    """
    In-memory remote log: returns up to `page_size` newest events in [from, to].
    `errors` maps a 0-based call index to an exception raised on that call.
    """

    def __init__(self, events: list[Event], *, page_size: int = 100, errors: Optional[dict[int, Exception]] = None):
        self.events = list(events)
        self.page_size = page_size
        self.errors = dict(errors or {})
        self.calls: list[tuple[int, int]] = []
        self.instruments: dict[str, Instrument] = {}
        self.instrument_error: Optional[Exception] = None
        self.closed = False

    async def fetch_page(self, from_ts: int, to_ts: int) -> Page:
        idx = len(self.calls)
        self.calls.append((from_ts, to_ts))
        if idx in self.errors:
            raise self.errors[idx]
        hits = [e for e in self.events if from_ts <= e.timestamp <= to_ts]
        hits.sort(key=lambda e: (e.timestamp, e.id), reverse=True)
        return Page(events=hits[: self.page_size], http_status=200)

    async def fetch_instruments(self) -> dict[str, Instrument]:
        if self.instrument_error is not None:
            raise self.instrument_error
        return dict(self.instruments)

    async def aclose(self) -> None:
        self.closed = True


class FakeSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> Any:
        self.calls.append(seconds)


@pytest.fixture()
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def sql_store(tmp_path) -> SqlStore:
    return SqlStore.from_url(f"sqlite:///{tmp_path / 'logbook.db'}")


@pytest.fixture()
def fake_sleep() -> FakeSleep:
    return FakeSleep()
