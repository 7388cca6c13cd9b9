from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from trade_logbook.store import DurableStore

logger = logging.getLogger(__name__)

Interval = tuple[int, int]


def normalize_intervals(intervals: Iterable[Interval]) -> list[Interval]:
    """
    Sort by start and merge any interval starting at or before previous end + 1,
    so the result is increasing, non-overlapping and non-touching.
    """
    items = sorted((int(a), int(b)) for a, b in intervals if int(a) <= int(b))
    out: list[Interval] = []
    for a, b in items:
        if out and a <= out[-1][1] + 1:
            if b > out[-1][1]:
                out[-1] = (out[-1][0], b)
            continue
        out.append((a, b))
    return out


def missing_ranges(covered: list[Interval], start: int, end: int) -> list[Interval]:
    """
    Closed sub-intervals of [start, end] not inside `covered` (which must already
    be normalized), ascending.
    """
    start, end = int(start), int(end)
    if start > end:
        return []
    out: list[Interval] = []
    cursor = start
    for a, b in covered:
        if b < cursor:
            continue
        if a > end:
            break
        if a > cursor:
            out.append((cursor, a - 1))
        cursor = max(cursor, b + 1)
        if cursor > end:
            return out
    if cursor <= end:
        out.append((cursor, end))
    return out


def _parse_stored(value: Any) -> Optional[list[Interval]]:
    if not isinstance(value, list):
        return None
    out: list[Interval] = []
    for item in value:
        if not isinstance(item, (list, tuple)) or len(item) != 2:
            return None
        a, b = item
        if isinstance(a, bool) or isinstance(b, bool) or not isinstance(a, int) or not isinstance(b, int):
            return None
        out.append((a, b))
    return out


class CoverageTracker:
    """Closed timestamp ranges already fully fetched from the remote log."""

    def __init__(self, store: DurableStore, key: str):
        self.store = store
        self.key = key

    def intervals(self) -> list[Interval]:
        raw = self.store.get(self.key, [])
        parsed = _parse_stored(raw)
        if parsed is None:
            logger.warning("Coverage value under %s is malformed; resetting to empty.", self.key)
            self.store.set(self.key, [])
            return []
        return normalize_intervals(parsed)

    def missing(self, requested_from: int, requested_to: int) -> list[Interval]:
        return missing_ranges(self.intervals(), requested_from, requested_to)

    def is_covered(self, requested_from: int, requested_to: int) -> bool:
        return not self.missing(requested_from, requested_to)

    def extend(self, a: int, b: int) -> list[Interval]:
        if int(a) > int(b):
            raise ValueError(f"Invalid coverage interval [{a}, {b}].")
        merged = normalize_intervals([*self.intervals(), (int(a), int(b))])
        self.store.set(self.key, [[x, y] for x, y in merged])
        logger.info("Coverage extended with [%s, %s]; %s interval(s) now.", a, b, len(merged))
        return merged

    def clear(self) -> None:
        self.store.set(self.key, [])
