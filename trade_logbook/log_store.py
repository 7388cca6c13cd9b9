from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from trade_logbook.models import Event
from trade_logbook.store import DurableStore

logger = logging.getLogger(__name__)

DEFAULT_CAP = 500_000


@dataclass(frozen=True)
class AddResult:
    inserted: int
    duplicates: int
    evicted: int


class _Snapshot:
    """In-memory view of the persisted {byId, idsAsc, last_ts} value."""

    def __init__(self, by_id: dict[str, Event], ids_asc: list[str]):
        self.by_id = by_id
        self.ids_asc = ids_asc

    def to_json(self) -> dict[str, Any]:
        last = self.by_id[self.ids_asc[-1]].timestamp if self.ids_asc else None
        return {
            "byId": {i: self.by_id[i].to_dict() for i in self.ids_asc},
            "idsAsc": list(self.ids_asc),
            "last_ts": last,
        }


def _sort_key(ev: Event) -> tuple[int, str]:
    return (ev.timestamp, ev.id)


class LogStore:
    """
    Id-keyed, deduplicated event collection with an ascending (timestamp, id)
    index and a soft size cap (oldest evicted first).
    """

    def __init__(self, store: DurableStore, key: str, *, cap: int = DEFAULT_CAP):
        if cap <= 0:
            raise ValueError("cap must be positive")
        self.store = store
        self.key = key
        self.cap = int(cap)

    def _empty(self) -> _Snapshot:
        return _Snapshot({}, [])

    def _load(self) -> _Snapshot:
        raw = self.store.get(self.key, None)
        if raw is None:
            return self._empty()
        snap = self._parse(raw)
        if snap is None:
            logger.warning("Log store value under %s is malformed; resetting to empty.", self.key)
            self.store.set(self.key, self._empty().to_json())
            return self._empty()
        return snap

    def _parse(self, raw: Any) -> Optional[_Snapshot]:
        if not isinstance(raw, dict):
            return None
        by_id_raw = raw.get("byId")
        ids = raw.get("idsAsc")
        if not isinstance(by_id_raw, dict) or not isinstance(ids, list):
            return None
        if len(ids) != len(by_id_raw) or set(ids) != set(by_id_raw):
            return None
        by_id: dict[str, Event] = {}
        try:
            for k, v in by_id_raw.items():
                by_id[str(k)] = Event.from_dict(v)
        except (KeyError, TypeError, ValueError):
            return None
        ids_asc = sorted(by_id, key=lambda i: _sort_key(by_id[i]))
        return _Snapshot(by_id, ids_asc)

    def _save(self, snap: _Snapshot) -> None:
        self.store.set(self.key, snap.to_json())

    def add(self, events: Iterable[Event]) -> AddResult:
        snap = self._load()
        inserted = 0
        duplicates = 0
        for ev in events:
            if ev.id in snap.by_id:
                duplicates += 1
                continue
            snap.by_id[ev.id] = ev
            snap.ids_asc.append(ev.id)
            inserted += 1
        snap.ids_asc.sort(key=lambda i: _sort_key(snap.by_id[i]))

        evicted = 0
        if len(snap.ids_asc) > self.cap:
            drop = len(snap.ids_asc) - self.cap
            for i in snap.ids_asc[:drop]:
                del snap.by_id[i]
            del snap.ids_asc[:drop]
            evicted = drop
            logger.info("Log store over cap (%s); evicted %s oldest event(s).", self.cap, drop)

        if inserted or evicted:
            self._save(snap)
        return AddResult(inserted=inserted, duplicates=duplicates, evicted=evicted)

    def get(self, event_id: str) -> Optional[Event]:
        return self._load().by_id.get(str(event_id))

    def ids(self) -> list[str]:
        return list(self._load().ids_asc)

    def all(self) -> list[Event]:
        snap = self._load()
        return [snap.by_id[i] for i in snap.ids_asc]

    def query(self, from_ts: Optional[int], to_ts: Optional[int]) -> list[Event]:
        """Events with from_ts <= timestamp <= to_ts (either bound optional), ascending."""
        out: list[Event] = []
        for ev in self.all():
            if from_ts is not None and ev.timestamp < from_ts:
                continue
            if to_ts is not None and ev.timestamp > to_ts:
                break
            out.append(ev)
        return out

    def before(self, ts: int, *, since: Optional[int] = None) -> list[Event]:
        """Events strictly before `ts` (optionally not older than `since`), ascending."""
        return self.query(since, int(ts) - 1)

    def split(self, from_ts: int, to_ts: int, *, since: Optional[int] = None) -> tuple[list[Event], list[Event]]:
        """
        One pass over the store: (events before `from_ts`, not older than
        `since`) and (events in [from_ts, to_ts]), both ascending.
        """
        context: list[Event] = []
        window: list[Event] = []
        snap = self._load()
        for i in snap.ids_asc:
            ev = snap.by_id[i]
            if ev.timestamp > to_ts:
                break
            if ev.timestamp >= from_ts:
                window.append(ev)
            elif since is None or ev.timestamp >= since:
                context.append(ev)
        return context, window

    def count(self) -> int:
        return len(self._load().ids_asc)

    def bounds(self) -> tuple[Optional[int], Optional[int]]:
        snap = self._load()
        if not snap.ids_asc:
            return None, None
        return snap.by_id[snap.ids_asc[0]].timestamp, snap.by_id[snap.ids_asc[-1]].timestamp

    def clear(self) -> None:
        self._save(self._empty())
