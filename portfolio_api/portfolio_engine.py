from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Sequence

from portfolio_api.ledger import LedgerEntry, replay_positions

ZERO = Decimal("0")
HUNDRED = Decimal("100")
PERFORMANCE_MONTHS = 12

ASSET_TYPE_ORDER = ("equity", "etf", "crypto", "real_estate")
ASSET_TYPE_NAMES = {
    "equity": "Equities",
    "etf": "ETFs",
    "crypto": "Crypto",
    "real_estate": "Real Estate",
}
ASSET_TYPE_COLORS = {
    "equity": "hsl(var(--chart-1))",
    "etf": "hsl(var(--chart-2))",
    "crypto": "hsl(var(--chart-4))",
    "real_estate": "hsl(var(--chart-5))",
}
DEFAULT_COLOR = "hsl(var(--chart-1))"


@dataclass(frozen=True)
class Holding:
    id: str
    type: str
    quantity: Decimal
    average_price: Decimal
    current_price: Decimal

    @property
    def market_value(self) -> Decimal:
        return self.quantity * self.current_price

    @property
    def cost_basis(self) -> Decimal:
        return self.quantity * self.average_price


@dataclass(frozen=True)
class PortfolioSummary:
    total_assets: Decimal
    total_debt: Decimal
    net_worth: Decimal
    monthly_change: Decimal
    monthly_change_amount: Decimal
    investment_value: Decimal
    cash_balance: Decimal


@dataclass(frozen=True)
class AllocationSlice:
    type: str
    name: str
    value: Decimal
    percentage: Decimal
    color: str


@dataclass(frozen=True)
class PerformancePoint:
    month: str
    label: str
    value: Decimal


@dataclass(frozen=True)
class HoldingDetail:
    asset_id: str
    total_value: Decimal
    total_cost: Decimal
    profit: Decimal
    change: Decimal
    change_amount: Decimal


def summarize_portfolio(
    holdings: Iterable[Holding],
    cash_balance: Decimal,
) -> PortfolioSummary:
    holdings = list(holdings)
    investment_value = sum((h.market_value for h in holdings), ZERO)
    total_cost = sum((h.cost_basis for h in holdings), ZERO)

    total_assets = investment_value + max(ZERO, cash_balance)
    total_debt = max(ZERO, -cash_balance)
    net_worth = total_assets - total_debt

    if total_cost > ZERO:
        monthly_change = (investment_value - total_cost) / total_cost * HUNDRED
    else:
        monthly_change = ZERO

    return PortfolioSummary(
        total_assets=total_assets,
        total_debt=total_debt,
        net_worth=net_worth,
        monthly_change=monthly_change,
        monthly_change_amount=investment_value - total_cost,
        investment_value=investment_value,
        cash_balance=cash_balance,
    )


def allocate_by_type(holdings: Iterable[Holding]) -> List[AllocationSlice]:
    values: dict[str, Decimal] = {}
    for holding in holdings:
        values[holding.type] = values.get(holding.type, ZERO) + holding.market_value
    total = sum(values.values(), ZERO)

    ordered_types = [t for t in ASSET_TYPE_ORDER if t in values]
    ordered_types += sorted(t for t in values if t not in ASSET_TYPE_ORDER)

    return [
        AllocationSlice(
            type=asset_type,
            name=ASSET_TYPE_NAMES.get(asset_type, asset_type),
            value=values[asset_type],
            percentage=_percentage(values[asset_type], total),
            color=ASSET_TYPE_COLORS.get(asset_type, DEFAULT_COLOR),
        )
        for asset_type in ordered_types
    ]


def monthly_performance(
    holdings: Iterable[Holding],
    entries: Sequence[LedgerEntry],
    today: date,
    months: int = PERFORMANCE_MONTHS,
) -> List[PerformancePoint]:
    """Value the portfolio on the 1st of each trailing month.

    Quantities come from replaying the ledger up to that day. They are valued
    at today's current price, not at a historical quote.
    """
    current_prices = {h.id: h.current_price for h in holdings}
    points: List[PerformancePoint] = []
    for offset in range(months - 1, -1, -1):
        month_start = shift_month(today.replace(day=1), -offset)
        positions = replay_positions(entries, as_of=month_start)
        value = ZERO
        for asset_id, position in positions.items():
            price = current_prices.get(asset_id)
            if price is None or position.quantity <= ZERO:
                continue
            value += position.quantity * price
        points.append(
            PerformancePoint(
                month=month_start.strftime("%Y-%m"),
                label=calendar.month_abbr[month_start.month],
                value=value,
            )
        )
    return points


def describe_holding(holding: Holding) -> HoldingDetail:
    total_value = holding.market_value
    total_cost = holding.cost_basis
    change_amount = holding.current_price - holding.average_price
    if total_cost != ZERO and holding.average_price != ZERO:
        change = change_amount / holding.average_price * HUNDRED
    else:
        change = ZERO
    return HoldingDetail(
        asset_id=holding.id,
        total_value=total_value,
        total_cost=total_cost,
        profit=total_value - total_cost,
        change=change,
        change_amount=change_amount,
    )


def shift_month(value: date, months: int) -> date:
    month_index = (value.year * 12 + value.month - 1) + months
    year = month_index // 12
    month = month_index % 12 + 1
    return date(year, month, 1)


def _percentage(part: Decimal, total: Decimal) -> Decimal:
    if total == ZERO:
        return ZERO
    return part / total * HUNDRED
