from datetime import date, datetime
from decimal import Decimal
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from portfolio_api.config import SUPPORTED_CURRENCIES, normalize_currency

# Scales of the Numeric columns in database.py
QUANTITY_PLACES = 8
MONEY_PLACES = 2
CENT = Decimal("0.01")


class AssetType:
    values = ("equity", "etf", "crypto", "real_estate")

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower().replace("-", "_")
        if normalized not in cls.values:
            raise ValueError("Invalid asset type.")
        return normalized


class Market:
    values = ("BIST", "US", "OTHER")

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in cls.values:
            raise ValueError("Invalid market.")
        return normalized


class TransactionType:
    values = ("buy", "sell")

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValueError("Invalid transaction type.")
        return normalized


class IncomeCategory:
    values = ("salary", "rent", "dividend", "interest", "freelance", "other")

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValueError("Invalid income category.")
        return normalized


class ExpenseCategory:
    values = (
        "groceries",
        "bills",
        "transport",
        "health",
        "entertainment",
        "clothing",
        "dining",
        "rent",
        "loan",
        "insurance",
        "other",
    )

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValueError("Invalid expense category.")
        return normalized


def coerce_date(value: Any) -> date:
    """Accept a date, a datetime, or an ISO date/datetime string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError("Date must be an ISO 8601 string.")
    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError as exc:
        raise ValueError("Date must be in YYYY-MM-DD or ISO 8601 format.") from exc


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AssetPayload(ApiModel):
    type: str
    name: str
    symbol: str
    market: str
    quantity: Decimal = Decimal("0")
    average_price: Decimal
    current_price: Decimal
    currency: str | None = None

    @classmethod
    def validate_payload(cls, payload: "AssetPayload") -> "AssetPayload":
        payload.type = AssetType.validate(payload.type)
        payload.market = Market.validate(payload.market)
        payload.name = payload.name.strip()
        payload.symbol = payload.symbol.strip().upper()
        if not payload.name:
            raise ValueError("Asset name required.")
        if not payload.symbol:
            raise ValueError("Asset symbol required.")
        if payload.currency is not None:
            payload.currency = normalize_currency(payload.currency)
        return payload


class AssetUpdatePayload(ApiModel):
    type: str | None = None
    name: str | None = None
    symbol: str | None = None
    market: str | None = None
    quantity: Decimal | None = None
    average_price: Decimal | None = None
    current_price: Decimal | None = None
    currency: str | None = None

    @classmethod
    def validate_payload(cls, payload: "AssetUpdatePayload") -> "AssetUpdatePayload":
        if payload.type is not None:
            payload.type = AssetType.validate(payload.type)
        if payload.market is not None:
            payload.market = Market.validate(payload.market)
        if payload.name is not None:
            payload.name = payload.name.strip()
            if not payload.name:
                raise ValueError("Asset name required.")
        if payload.symbol is not None:
            payload.symbol = payload.symbol.strip().upper()
            if not payload.symbol:
                raise ValueError("Asset symbol required.")
        if payload.currency is not None:
            payload.currency = normalize_currency(payload.currency)
        return payload

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude_none=True)


class AssetResponse(ApiModel):
    id: str
    type: str
    name: str
    symbol: str
    market: str
    quantity: Decimal
    average_price: Decimal
    current_price: Decimal
    currency: str
    created_at: datetime | None = None


class TransactionPayload(ApiModel):
    asset_id: str
    type: str
    quantity: Decimal = Field(decimal_places=QUANTITY_PLACES)
    price: Decimal = Field(decimal_places=QUANTITY_PLACES)
    total_amount: Decimal | None = Field(None, decimal_places=MONEY_PLACES)
    currency: str | None = None
    notes: str | None = None
    date: date

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, value: Any) -> date:
        return coerce_date(value)

    @classmethod
    def validate_payload(cls, payload: "TransactionPayload") -> "TransactionPayload":
        payload.type = TransactionType.validate(payload.type)
        payload.asset_id = payload.asset_id.strip()
        if not payload.asset_id:
            raise ValueError("Asset id required.")
        if payload.quantity <= 0:
            raise ValueError("Quantity must be greater than zero.")
        if payload.price < 0:
            raise ValueError("Price cannot be negative.")
        if payload.total_amount is None:
            payload.total_amount = (payload.quantity * payload.price).quantize(CENT)
        if payload.currency is not None:
            payload.currency = normalize_currency(payload.currency)
        payload.notes = payload.notes.strip() if payload.notes else None
        return payload


class TransactionResponse(ApiModel):
    id: str
    asset_id: str
    type: str
    quantity: Decimal
    price: Decimal
    total_amount: Decimal
    currency: str
    notes: str | None = None
    date: date
    created_at: datetime | None = None


class BudgetEntryPayload(ApiModel):
    category: str
    description: str
    amount: Decimal = Field(decimal_places=MONEY_PLACES)
    currency: str | None = None
    date: date
    is_recurring: bool = False

    category_type: ClassVar[type] = IncomeCategory

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, value: Any) -> date:
        return coerce_date(value)

    @classmethod
    def validate_payload(cls, payload: "BudgetEntryPayload") -> "BudgetEntryPayload":
        payload.category = cls.category_type.validate(payload.category)
        payload.description = payload.description.strip()
        if not payload.description:
            raise ValueError("Description required.")
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        if payload.currency is not None:
            payload.currency = normalize_currency(payload.currency)
        return payload


class IncomePayload(BudgetEntryPayload):
    category_type: ClassVar[type] = IncomeCategory


class ExpensePayload(BudgetEntryPayload):
    category_type: ClassVar[type] = ExpenseCategory


class BudgetEntryResponse(ApiModel):
    id: str
    category: str
    description: str
    amount: Decimal
    currency: str
    date: date
    is_recurring: bool
    created_at: datetime | None = None


class PortfolioSummaryResponse(ApiModel):
    total_assets: Decimal
    total_debt: Decimal
    net_worth: Decimal
    monthly_change: Decimal
    monthly_change_amount: Decimal
    investment_value: Decimal
    cash_balance: Decimal


class AllocationResponse(ApiModel):
    type: str
    name: str
    value: Decimal
    percentage: Decimal
    color: str


class PerformanceResponse(ApiModel):
    month: str
    label: str
    value: Decimal


class AssetDetailResponse(AssetResponse):
    total_value: Decimal
    total_cost: Decimal
    profit: Decimal
    change: Decimal
    change_amount: Decimal


class CategoryTotalResponse(ApiModel):
    category: str
    amount: Decimal
    percentage: Decimal


class BudgetSummaryResponse(ApiModel):
    total_income: Decimal
    total_expense: Decimal
    balance: Decimal
    income_by_category: list[CategoryTotalResponse]
    expense_by_category: list[CategoryTotalResponse]


class PriceUpdateResultResponse(ApiModel):
    asset_id: str
    symbol: str
    old_price: Decimal
    new_price: Decimal | None = None
    success: bool
    error: str | None = None


class PriceUpdateResponse(ApiModel):
    message: str
    results: list[PriceUpdateResultResponse]
    total: int
    updated: int
    failed: int


class PriceLookupResponse(ApiModel):
    symbol: str
    type: str
    market: str
    price: Decimal


class ExchangeRatesResponse(ApiModel):
    base: str = "TRY"
    rates: dict[str, Decimal]
    updated_at: datetime


class CategoriesResponse(ApiModel):
    asset_types: list[str] = list(AssetType.values)
    markets: list[str] = list(Market.values)
    currencies: list[str] = list(SUPPORTED_CURRENCIES)
    income_categories: list[str] = list(IncomeCategory.values)
    expense_categories: list[str] = list(ExpenseCategory.values)
