from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel

from trade_logbook.money import float_or_none

logger = logging.getLogger(__name__)

# Remote log type codes for stock trades.
LOG_TYPE_BUY = 5510
LOG_TYPE_SELL = 5511


class EventKind(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    OTHER = "OTHER"


def kind_for_type_code(code: Any) -> EventKind:
    if isinstance(code, bool):
        return EventKind.OTHER
    if isinstance(code, int):
        n: Optional[int] = code
    elif isinstance(code, str) and code.strip().isdigit():
        n = int(code.strip())
    else:
        n = None
    if n == LOG_TYPE_BUY:
        return EventKind.BUY
    if n == LOG_TYPE_SELL:
        return EventKind.SELL
    return EventKind.OTHER


@dataclass(frozen=True)
class Event:
    id: str
    timestamp: int
    kind: EventKind
    category: str = ""
    instrument: Optional[str] = None
    shares: Optional[float] = None
    price: Optional[float] = None
    gross: Optional[float] = None  # remote "worth": net proceeds for SELLs
    type_code: Optional[int] = None
    title: str = ""

    @property
    def ledger_eligible(self) -> bool:
        return (
            self.kind in (EventKind.BUY, EventKind.SELL)
            and bool(self.instrument)
            and self.shares is not None
            and self.gross is not None
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": int(self.timestamp),
            "kind": self.kind.value,
            "category": self.category,
            "instrument": self.instrument,
            "shares": self.shares,
            "price": self.price,
            "gross": self.gross,
            "type_code": self.type_code,
            "title": self.title,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Event":
        return cls(
            id=str(d["id"]),
            timestamp=int(d["timestamp"]),
            kind=EventKind(d.get("kind") or EventKind.OTHER.value),
            category=str(d.get("category") or ""),
            instrument=(str(d["instrument"]) if d.get("instrument") is not None else None),
            shares=float_or_none(d.get("shares")),
            price=float_or_none(d.get("price")),
            gross=float_or_none(d.get("gross")),
            type_code=(int(d["type_code"]) if isinstance(d.get("type_code"), int) else None),
            title=str(d.get("title") or ""),
        )


def _numeric(v: Any) -> Optional[float]:
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return None
    return float_or_none(v)


def event_from_raw(log_id: Any, entry: dict[str, Any]) -> Optional[Event]:
    """
    Normalize one raw log entry ({log, title, timestamp, category, data}).

    Returns None when the entry has no usable integer timestamp. Trade fields are
    best-effort: price falls back to gross/shares and gross to shares*price.
    """
    ts = entry.get("timestamp")
    if isinstance(ts, bool) or not isinstance(ts, (int, float)) or int(ts) != ts:
        logger.debug("Skipping log %s: bad timestamp %r", log_id, ts)
        return None
    data = entry.get("data") or {}
    if not isinstance(data, dict):
        data = {}

    code = entry.get("log")
    type_code: Optional[int] = None
    if isinstance(code, int) and not isinstance(code, bool):
        type_code = code
    elif isinstance(code, str) and code.strip().isdigit():
        type_code = int(code.strip())

    stock = data.get("stock")
    instrument = str(stock) if stock is not None and str(stock).strip() else None

    # amount/worth must already be numeric; price may arrive as a string.
    shares = _numeric(data.get("amount"))
    gross = _numeric(data.get("worth"))
    price = float_or_none(data.get("price"))

    if price is None and shares is not None and gross is not None and shares > 0:
        price = gross / shares
    if gross is None and shares is not None and price is not None:
        gross = shares * price

    return Event(
        id=str(log_id),
        timestamp=int(ts),
        kind=kind_for_type_code(code),
        category=str(entry.get("category") or ""),
        instrument=instrument,
        shares=shares,
        price=price,
        gross=gross,
        type_code=type_code,
        title=str(entry.get("title") or ""),
    )


@dataclass
class Lot:
    shares: float = 0.0
    cost: float = 0.0

    @property
    def average_cost(self) -> Optional[float]:
        if self.shares > 0:
            return self.cost / self.shares
        return None


@dataclass(frozen=True)
class ManualOverride:
    buy_price: float
    set_at: int

    def to_dict(self) -> dict[str, Any]:
        return {"buyPrice": self.buy_price, "ts": int(self.set_at)}

    @classmethod
    def from_dict(cls, d: Any) -> Optional["ManualOverride"]:
        if not isinstance(d, dict):
            return None
        price = float_or_none(d.get("buyPrice"))
        if price is None or price <= 0:
            return None
        ts = d.get("ts")
        return cls(buy_price=price, set_at=int(ts) if isinstance(ts, (int, float)) and not isinstance(ts, bool) else 0)


@dataclass(frozen=True)
class ResumeCursor:
    from_ts: int
    to_ts: int
    cursor_to: Optional[int]

    def matches(self, from_ts: int, to_ts: int) -> bool:
        return self.from_ts == int(from_ts) and self.to_ts == int(to_ts)

    def to_dict(self) -> dict[str, Any]:
        return {"from": self.from_ts, "to": self.to_ts, "cursorTo": self.cursor_to}

    @classmethod
    def from_dict(cls, d: Any) -> Optional["ResumeCursor"]:
        if not isinstance(d, dict):
            return None
        try:
            f, t = d["from"], d["to"]
            c = d.get("cursorTo")
            if any(isinstance(v, bool) for v in (f, t, c)):
                return None
            return cls(from_ts=int(f), to_ts=int(t), cursor_to=(int(c) if c is not None else None))
        except (KeyError, TypeError, ValueError):
            return None


class LedgerRow(BaseModel):
    id: str
    timestamp: int
    action: str  # BUY|SELL
    instrument: str
    ticker: str
    shares: float
    price: Optional[float] = None
    buy_price: Optional[float] = None
    sell_price: Optional[float] = None
    gross: Optional[float] = None
    fee: float = 0.0
    net: Optional[float] = None  # None on BUY rows: not applicable
    cost_basis: Optional[float] = None
    profit: Optional[float] = None
    manual_override_used: bool = False
    needs_manual_input: bool = False


class WindowSummary(BaseModel):
    total_cost_basis: float = 0.0
    total_net: float = 0.0
    total_profit: float = 0.0
    total_fees: float = 0.0
    sell_count: int = 0
    buy_count: int = 0
    needs_manual_input: int = 0
