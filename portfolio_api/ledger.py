from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable

ZERO = Decimal("0")
BUY = "buy"
SELL = "sell"
# Matches the Numeric(18, 8) columns the position is stored in
PRICE_SCALE = Decimal("0.00000001")


@dataclass(frozen=True)
class Position:
    quantity: Decimal = ZERO
    average_price: Decimal = ZERO


@dataclass(frozen=True)
class LedgerEntry:
    asset_id: str
    type: str
    quantity: Decimal
    price: Decimal
    date: date


def apply_transaction(
    position: Position,
    txn_type: str,
    quantity: Decimal,
    price: Decimal,
) -> Position:
    """Return the position after a buy or sell.

    Buys recompute the weighted average cost, rounded to eight places. Sells
    only reduce the quantity, never below zero, and keep the average cost.
    """
    txn_quantity = _coerce_amount(quantity)
    txn_price = _coerce_amount(price)
    normalized = txn_type.strip().lower()

    if normalized == BUY:
        new_quantity = position.quantity + txn_quantity
        if new_quantity > ZERO:
            cost = position.quantity * position.average_price + txn_quantity * txn_price
            new_average = (cost / new_quantity).quantize(PRICE_SCALE, rounding=ROUND_HALF_UP)
        else:
            new_average = ZERO
        return Position(quantity=new_quantity, average_price=new_average)
    if normalized == SELL:
        new_quantity = max(ZERO, position.quantity - txn_quantity)
        return Position(quantity=new_quantity, average_price=position.average_price)
    raise ValueError(f"Unsupported transaction type: {txn_type}")


def replay_positions(
    entries: Iterable[LedgerEntry],
    as_of: date | None = None,
) -> Dict[str, Position]:
    """Rebuild per-asset positions from history, oldest entry first.

    Entries dated after ``as_of`` are ignored.
    """
    ordered = sorted(entries, key=lambda entry: entry.date)
    positions: Dict[str, Position] = {}
    for entry in ordered:
        if as_of is not None and entry.date > as_of:
            continue
        current = positions.get(entry.asset_id, Position())
        positions[entry.asset_id] = apply_transaction(
            current, entry.type, entry.quantity, entry.price
        )
    return positions


def _coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
