from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP
from typing import Any, Iterable, Mapping, Optional

from trade_logbook.models import Event, EventKind, LedgerRow, Lot, ManualOverride, WindowSummary
from trade_logbook.money import to_decimal

DEFAULT_FEE_RATE = Decimal("0.001")


@dataclass(frozen=True)
class SellAmounts:
    gross_exact: Decimal
    fee: Decimal
    net: Decimal
    gross_display: Decimal


def sell_amounts(price: Any, shares: Any, *, fee_rate: Any = DEFAULT_FEE_RATE) -> SellAmounts:
    """
    Cent-accurate sell proceeds.

    price is rounded half-up to whole cents before multiplying by shares. The fee
    rounds up to a whole currency unit, net rounds down, and the displayed gross
    is re-derived as net + fee so the three figures always agree.
    """
    p = to_decimal(price) or Decimal(0)
    q = to_decimal(shares) or Decimal(0)
    rate = to_decimal(fee_rate)
    if rate is None:
        rate = DEFAULT_FEE_RATE
    price_cents = (p * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    gross = (price_cents * q) / 100
    fee = (gross * rate).to_integral_value(rounding=ROUND_CEILING)
    net = (gross - fee).to_integral_value(rounding=ROUND_FLOOR)
    return SellAmounts(gross_exact=gross, fee=fee, net=net, gross_display=net + fee)


def _ordered(events: Iterable[Event]) -> list[Event]:
    return sorted((e for e in events if e.ledger_eligible), key=lambda e: (e.timestamp, e.id))


def _consume(lot: Lot, sold: float) -> Optional[float]:
    """
    Remove `sold` shares at the lot's average cost. Returns the cost removed, or
    None when the lot holds no shares (no basis can be derived).
    """
    avg = lot.average_cost
    if avg is None:
        return None
    basis = avg * sold
    lot.shares -= sold
    lot.cost -= basis
    if lot.shares <= 0:
        lot.shares = 0.0
        lot.cost = 0.0
    elif lot.cost < 0:
        lot.cost = 0.0
    return basis


def _buy(lot: Lot, ev: Event) -> None:
    lot.shares += float(ev.shares or 0.0)
    lot.cost += float(ev.gross or 0.0)


def opening_lots(context_events: Iterable[Event], lots: Optional[dict[str, Lot]] = None) -> dict[str, Lot]:
    """
    Replay events that precede a window into per-instrument lots. Sells without
    a basis leave the lot untouched (it already holds no shares).
    """
    out: dict[str, Lot] = lots if lots is not None else {}
    for ev in _ordered(context_events):
        lot = out.setdefault(str(ev.instrument), Lot())
        if ev.kind == EventKind.BUY:
            _buy(lot, ev)
        else:
            _consume(lot, float(ev.shares or 0.0))
    return out


def replay(
    events: Iterable[Event],
    overrides: Optional[Mapping[str, ManualOverride]] = None,
    *,
    opening: Optional[Mapping[str, Lot]] = None,
    labels: Optional[Mapping[str, str]] = None,
    fee_rate: Any = DEFAULT_FEE_RATE,
) -> list[LedgerRow]:
    """
    Replay window events in time order and return one row per BUY/SELL, newest
    first. `opening` seeds the lots (copied, never mutated).

    A SELL's cost basis comes from the lot's average cost, else from a manual
    override for that event id, else the row is flagged as needing manual input.
    """
    overrides = overrides or {}
    labels = labels or {}
    lots: dict[str, Lot] = {k: Lot(shares=v.shares, cost=v.cost) for k, v in (opening or {}).items()}
    rows: list[LedgerRow] = []

    for ev in _ordered(events):
        instrument = str(ev.instrument)
        ticker = labels.get(instrument) or instrument
        lot = lots.setdefault(instrument, Lot())
        shares = float(ev.shares or 0.0)

        if ev.kind == EventKind.BUY:
            _buy(lot, ev)
            rows.append(
                LedgerRow(
                    id=ev.id,
                    timestamp=ev.timestamp,
                    action="BUY",
                    instrument=instrument,
                    ticker=ticker,
                    shares=shares,
                    price=ev.price,
                    buy_price=ev.price,
                    fee=0.0,
                    net=None,
                    cost_basis=float(ev.gross or 0.0),
                )
            )
            continue

        amounts = sell_amounts(ev.price, shares, fee_rate=fee_rate)
        net = float(amounts.net)
        buy_price = lot.average_cost
        basis = _consume(lot, shares)
        manual_used = False
        needs_input = False
        if basis is None:
            ov = overrides.get(ev.id)
            if ov is not None and ov.buy_price > 0:
                buy_price = ov.buy_price
                basis = ov.buy_price * shares
                manual_used = True
            else:
                needs_input = True

        rows.append(
            LedgerRow(
                id=ev.id,
                timestamp=ev.timestamp,
                action="SELL",
                instrument=instrument,
                ticker=ticker,
                shares=shares,
                price=ev.price,
                buy_price=buy_price,
                sell_price=ev.price,
                gross=float(amounts.gross_display),
                fee=float(amounts.fee),
                net=net,
                cost_basis=basis,
                profit=(net - basis) if basis is not None else None,
                manual_override_used=manual_used,
                needs_manual_input=needs_input,
            )
        )

    rows.sort(key=lambda r: (r.timestamp, r.id), reverse=True)
    return rows


def summarize(rows: Iterable[LedgerRow]) -> WindowSummary:
    s = WindowSummary()
    for r in rows:
        if r.action == "BUY":
            s.buy_count += 1
            continue
        s.sell_count += 1
        s.total_net += r.net or 0.0
        s.total_fees += r.fee or 0.0
        if r.cost_basis is not None:
            s.total_cost_basis += r.cost_basis
            s.total_profit += r.profit or 0.0
        if r.needs_manual_input:
            s.needs_manual_input += 1
    return s
