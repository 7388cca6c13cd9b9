from __future__ import annotations

import pytest

from conftest import trade
from trade_logbook.log_store import LogStore
from trade_logbook.models import EventKind


def test_add_dedupes_by_id_and_sorts(store):
    logs = LogStore(store, "t:logs")
    res = logs.add([trade("b", 200, EventKind.BUY), trade("a", 100, EventKind.BUY)])
    assert (res.inserted, res.duplicates, res.evicted) == (2, 0, 0)

    res = logs.add([trade("a", 100, EventKind.BUY), trade("c", 150, EventKind.SELL)])
    assert (res.inserted, res.duplicates) == (1, 1)
    assert logs.ids() == ["a", "c", "b"]
    assert logs.count() == 3
    assert logs.bounds() == (100, 200)


def test_same_timestamp_orders_by_id(store):
    logs = LogStore(store, "t:logs")
    logs.add([trade("z", 100, EventKind.BUY), trade("m", 100, EventKind.BUY)])
    assert logs.ids() == ["m", "z"]


def test_persisted_layout(store):
    logs = LogStore(store, "t:logs")
    logs.add([trade("a", 100, EventKind.BUY)])
    raw = store.get("t:logs")
    assert raw["idsAsc"] == ["a"]
    assert raw["last_ts"] == 100
    assert raw["byId"]["a"]["kind"] == "BUY"


def test_cap_evicts_oldest(store):
    logs = LogStore(store, "t:logs", cap=3)
    logs.add([trade(f"e{i}", 100 + i, EventKind.BUY) for i in range(5)])
    assert logs.ids() == ["e2", "e3", "e4"]

    res = logs.add([trade("e9", 999, EventKind.BUY)])
    assert res.evicted == 1
    assert logs.ids() == ["e3", "e4", "e9"]


def test_query_and_before(store):
    logs = LogStore(store, "t:logs")
    logs.add([trade(str(ts), ts, EventKind.BUY) for ts in (100, 200, 300, 400)])
    assert [e.id for e in logs.query(200, 300)] == ["200", "300"]
    assert [e.id for e in logs.query(None, 250)] == ["100", "200"]
    assert [e.id for e in logs.before(300)] == ["100", "200"]
    assert [e.id for e in logs.before(300, since=150)] == ["200"]
    assert logs.get("400").timestamp == 400
    assert logs.get("nope") is None


def test_index_mismatch_resets(store):
    store.set("t:logs", {"byId": {"a": trade("a", 1, EventKind.BUY).to_dict()}, "idsAsc": ["a", "b"], "last_ts": 1})
    logs = LogStore(store, "t:logs")
    assert logs.count() == 0
    assert store.get("t:logs")["idsAsc"] == []


def test_garbage_value_resets(store):
    store.set("t:logs", "garbage")
    logs = LogStore(store, "t:logs")
    assert logs.all() == []


def test_clear(store):
    logs = LogStore(store, "t:logs")
    logs.add([trade("a", 1, EventKind.BUY)])
    logs.clear()
    assert logs.count() == 0
    assert logs.bounds() == (None, None)


def test_cap_must_be_positive(store):
    with pytest.raises(ValueError):
        LogStore(store, "t:logs", cap=0)


def test_split_returns_context_and_window(store):
    logs = LogStore(store, "t:logs")
    logs.add([trade(str(ts), ts, EventKind.BUY) for ts in (100, 200, 300, 400, 500)])
    context, window = logs.split(300, 400)
    assert [e.id for e in context] == ["100", "200"]
    assert [e.id for e in window] == ["300", "400"]

    context, window = logs.split(300, 400, since=150)
    assert [e.id for e in context] == ["200"]
