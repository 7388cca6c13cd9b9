from __future__ import annotations

import logging
import math
from typing import Any, Callable, Optional

from trade_logbook.models import ManualOverride
from trade_logbook.store import DurableStore
from trade_logbook.timeutil import unix_now

logger = logging.getLogger(__name__)


class ManualOverrideMap:
    """
    Sell event id -> user-supplied buy price. Only consulted by the ledger when a
    SELL has no reconstructable cost basis.
    """

    def __init__(self, store: DurableStore, key: str, *, clock: Callable[[], int] = unix_now):
        self.store = store
        self.key = key
        self._clock = clock

    def _raw(self) -> dict[str, Any]:
        raw = self.store.get(self.key, {})
        if not isinstance(raw, dict):
            logger.warning("Manual override value under %s is malformed; resetting to empty.", self.key)
            self.store.set(self.key, {})
            return {}
        return raw

    def all(self) -> dict[str, ManualOverride]:
        out: dict[str, ManualOverride] = {}
        for event_id, v in self._raw().items():
            ov = ManualOverride.from_dict(v)
            if ov is not None:
                out[str(event_id)] = ov
        return out

    def get(self, event_id: str) -> Optional[ManualOverride]:
        return ManualOverride.from_dict(self._raw().get(str(event_id)))

    def set(self, event_id: str, price: Any) -> Optional[ManualOverride]:
        """
        Store a buy price for `event_id`. A missing, non-finite or non-positive
        price clears any existing override instead; returns None in that case.
        """
        try:
            p = float(price) if price is not None and not isinstance(price, bool) else None
        except (TypeError, ValueError):
            p = None
        if p is None or not math.isfinite(p) or p <= 0:
            self.clear(event_id)
            return None
        ov = ManualOverride(buy_price=p, set_at=int(self._clock()))
        raw = self._raw()
        raw[str(event_id)] = ov.to_dict()
        self.store.set(self.key, raw)
        return ov

    def clear(self, event_id: str) -> bool:
        raw = self._raw()
        if str(event_id) not in raw:
            return False
        del raw[str(event_id)]
        self.store.set(self.key, raw)
        return True

    def clear_all(self) -> int:
        n = len(self._raw())
        self.store.set(self.key, {})
        return n
