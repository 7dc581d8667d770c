import logging
from datetime import date, datetime, timezone

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from portfolio_api.budget_engine import BudgetEntry, summarize_budget
from portfolio_api.config import (
    DATABASE_URL,
    FRONTEND_ORIGIN,
    LOG_DIR,
    LOG_LEVEL,
    PRICE_REQUEST_TIMEOUT,
)
from portfolio_api.database import create_db_engine, init_db
from portfolio_api.ledger import LedgerEntry
from portfolio_api.logging_setup import setup_logging
from portfolio_api.portfolio_engine import (
    Holding,
    allocate_by_type,
    describe_holding,
    monthly_performance,
    summarize_portfolio,
)
from portfolio_api.price_providers import BinancePriceProvider, CoinGeckoProvider, YahooChartProvider
from portfolio_api.price_service import PriceService
from portfolio_api.schemas import (
    AllocationResponse,
    AssetDetailResponse,
    AssetPayload,
    AssetResponse,
    AssetType,
    AssetUpdatePayload,
    BudgetEntryResponse,
    BudgetSummaryResponse,
    CategoriesResponse,
    CategoryTotalResponse,
    ExchangeRatesResponse,
    ExpensePayload,
    IncomePayload,
    PerformanceResponse,
    PortfolioSummaryResponse,
    PriceLookupResponse,
    PriceUpdateResponse,
    PriceUpdateResultResponse,
    TransactionPayload,
    TransactionResponse,
    coerce_date,
)
from portfolio_api.storage import PortfolioStorage

setup_logging(LOG_LEVEL, LOG_DIR)
logger = logging.getLogger("portfolio_api.api")

app = FastAPI(title="Portfolio Tracker API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_ORIGIN],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

engine = create_db_engine(DATABASE_URL)
storage = PortfolioStorage(engine)
price_service = PriceService(
    binance=BinancePriceProvider(timeout_seconds=PRICE_REQUEST_TIMEOUT),
    yahoo=YahooChartProvider(timeout_seconds=PRICE_REQUEST_TIMEOUT),
    coingecko=CoinGeckoProvider(timeout_seconds=PRICE_REQUEST_TIMEOUT),
)


@app.on_event("startup")
def startup() -> None:
    init_db(engine)


def get_storage() -> PortfolioStorage:
    return storage


def get_price_service() -> PriceService:
    return price_service


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request.") if errors else "Invalid request."
    return JSONResponse(status_code=400, content={"detail": message})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled error on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=(type(exc), exc, exc.__traceback__),
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error."})


def holding_from_asset(asset: AssetResponse) -> Holding:
    return Holding(
        id=asset.id,
        type=asset.type,
        quantity=asset.quantity,
        average_price=asset.average_price,
        current_price=asset.current_price,
    )


def compute_budget_summary(
    store: PortfolioStorage,
    start_date: date | None = None,
    end_date: date | None = None,
):
    incomes = [
        BudgetEntry(amount=row.amount, category=row.category, date=row.date)
        for row in store.list_incomes()
    ]
    expenses = [
        BudgetEntry(amount=row.amount, category=row.category, date=row.date)
        for row in store.list_expenses()
    ]
    return summarize_budget(incomes, expenses, start_date=start_date, end_date=end_date)


def parse_optional_date(value: str | None, name: str) -> date | None:
    if value is None or not value.strip():
        return None
    try:
        return coerce_date(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {name}.") from exc


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/api/categories", response_model=CategoriesResponse)
def list_categories() -> CategoriesResponse:
    return CategoriesResponse()


@app.get("/api/assets", response_model=list[AssetResponse])
def list_assets(store: PortfolioStorage = Depends(get_storage)) -> list[AssetResponse]:
    return store.list_assets()


@app.get("/api/assets/{asset_id}", response_model=AssetResponse)
def get_asset(asset_id: str, store: PortfolioStorage = Depends(get_storage)) -> AssetResponse:
    asset = store.get_asset(asset_id)
    if not asset:
        raise HTTPException(status_code=404, detail="Asset not found.")
    return asset


@app.post("/api/assets", response_model=AssetResponse, status_code=201)
def create_asset(
    payload: AssetPayload, store: PortfolioStorage = Depends(get_storage)
) -> AssetResponse:
    try:
        payload = AssetPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return store.create_asset(payload)


@app.patch("/api/assets/{asset_id}", response_model=AssetResponse)
def update_asset(
    asset_id: str,
    payload: AssetUpdatePayload,
    store: PortfolioStorage = Depends(get_storage),
) -> AssetResponse:
    try:
        payload = AssetUpdatePayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    asset = store.update_asset(asset_id, payload.changes())
    if not asset:
        raise HTTPException(status_code=404, detail="Asset not found.")
    return asset


@app.delete("/api/assets/{asset_id}", status_code=204)
def delete_asset(asset_id: str, store: PortfolioStorage = Depends(get_storage)) -> Response:
    if not store.delete_asset(asset_id):
        raise HTTPException(status_code=404, detail="Asset not found.")
    return Response(status_code=204)


@app.get("/api/assets/{asset_id}/transactions", response_model=list[TransactionResponse])
def list_asset_transactions(
    asset_id: str, store: PortfolioStorage = Depends(get_storage)
) -> list[TransactionResponse]:
    return store.list_transactions_by_asset(asset_id)


@app.get("/api/transactions", response_model=list[TransactionResponse])
def list_transactions(store: PortfolioStorage = Depends(get_storage)) -> list[TransactionResponse]:
    return store.list_transactions()


@app.get("/api/transactions/{transaction_id}", response_model=TransactionResponse)
def get_transaction(
    transaction_id: str, store: PortfolioStorage = Depends(get_storage)
) -> TransactionResponse:
    transaction = store.get_transaction(transaction_id)
    if not transaction:
        raise HTTPException(status_code=404, detail="Transaction not found.")
    return transaction


@app.post("/api/transactions", response_model=TransactionResponse, status_code=201)
def create_transaction(
    payload: TransactionPayload, store: PortfolioStorage = Depends(get_storage)
) -> TransactionResponse:
    try:
        payload = TransactionPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return store.create_transaction(payload)


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: str, store: PortfolioStorage = Depends(get_storage)
) -> Response:
    if not store.delete_transaction(transaction_id):
        raise HTTPException(status_code=404, detail="Transaction not found.")
    return Response(status_code=204)


@app.get("/api/portfolio/summary", response_model=PortfolioSummaryResponse)
def portfolio_summary(store: PortfolioStorage = Depends(get_storage)) -> PortfolioSummaryResponse:
    holdings = [holding_from_asset(asset) for asset in store.list_assets()]
    budget = compute_budget_summary(store)
    summary = summarize_portfolio(holdings, cash_balance=budget.balance)
    return PortfolioSummaryResponse(
        total_assets=summary.total_assets,
        total_debt=summary.total_debt,
        net_worth=summary.net_worth,
        monthly_change=summary.monthly_change,
        monthly_change_amount=summary.monthly_change_amount,
        investment_value=summary.investment_value,
        cash_balance=summary.cash_balance,
    )


@app.get("/api/portfolio/allocation", response_model=list[AllocationResponse])
def portfolio_allocation(store: PortfolioStorage = Depends(get_storage)) -> list[AllocationResponse]:
    holdings = [holding_from_asset(asset) for asset in store.list_assets()]
    return [
        AllocationResponse(
            type=item.type,
            name=item.name,
            value=item.value,
            percentage=item.percentage,
            color=item.color,
        )
        for item in allocate_by_type(holdings)
    ]


@app.get("/api/portfolio/performance", response_model=list[PerformanceResponse])
def portfolio_performance(store: PortfolioStorage = Depends(get_storage)) -> list[PerformanceResponse]:
    holdings = [holding_from_asset(asset) for asset in store.list_assets()]
    entries = [
        LedgerEntry(
            asset_id=txn.asset_id,
            type=txn.type,
            quantity=txn.quantity,
            price=txn.price,
            date=txn.date,
        )
        for txn in store.list_transactions(chronological=True)
    ]
    points = monthly_performance(holdings, entries, today=date.today())
    return [
        PerformanceResponse(month=point.month, label=point.label, value=point.value)
        for point in points
    ]


@app.get("/api/portfolio/details", response_model=list[AssetDetailResponse])
def portfolio_details(store: PortfolioStorage = Depends(get_storage)) -> list[AssetDetailResponse]:
    details = []
    for asset in store.list_assets():
        detail = describe_holding(holding_from_asset(asset))
        details.append(
            AssetDetailResponse(
                **asset.model_dump(),
                total_value=detail.total_value,
                total_cost=detail.total_cost,
                profit=detail.profit,
                change=detail.change,
                change_amount=detail.change_amount,
            )
        )
    return details


@app.post("/api/prices/update", response_model=PriceUpdateResponse)
def update_prices(
    store: PortfolioStorage = Depends(get_storage),
    prices: PriceService = Depends(get_price_service),
) -> PriceUpdateResponse:
    report = prices.refresh_prices(store.list_assets(), store.update_asset_price)
    return PriceUpdateResponse(
        message="Price update finished.",
        results=[
            PriceUpdateResultResponse(
                asset_id=result.asset_id,
                symbol=result.symbol,
                old_price=result.old_price,
                new_price=result.new_price,
                success=result.success,
                error=result.error,
            )
            for result in report.results
        ],
        total=len(report.results),
        updated=report.updated,
        failed=report.failed,
    )


@app.get("/api/prices/{symbol}", response_model=PriceLookupResponse)
def lookup_price(
    symbol: str,
    asset_type: str | None = Query(None, alias="type"),
    market: str | None = Query(None),
    prices: PriceService = Depends(get_price_service),
) -> PriceLookupResponse:
    if not asset_type or not market:
        raise HTTPException(status_code=400, detail="Query parameters 'type' and 'market' are required.")
    try:
        asset_type = AssetType.validate(asset_type)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    price = prices.lookup_price(symbol, asset_type, market)
    if price is None:
        raise HTTPException(status_code=404, detail="Price not found.")
    return PriceLookupResponse(symbol=symbol, type=asset_type, market=market, price=price)


@app.get("/api/exchange-rates", response_model=ExchangeRatesResponse)
def exchange_rates(prices: PriceService = Depends(get_price_service)) -> ExchangeRatesResponse:
    return ExchangeRatesResponse(
        rates=prices.exchange_rates(),
        updated_at=datetime.now(timezone.utc),
    )


@app.get("/api/incomes", response_model=list[BudgetEntryResponse])
def list_incomes(store: PortfolioStorage = Depends(get_storage)) -> list[BudgetEntryResponse]:
    return store.list_incomes()


@app.get("/api/incomes/{income_id}", response_model=BudgetEntryResponse)
def get_income(income_id: str, store: PortfolioStorage = Depends(get_storage)) -> BudgetEntryResponse:
    income = store.get_income(income_id)
    if not income:
        raise HTTPException(status_code=404, detail="Income not found.")
    return income


@app.post("/api/incomes", response_model=BudgetEntryResponse, status_code=201)
def create_income(
    payload: IncomePayload, store: PortfolioStorage = Depends(get_storage)
) -> BudgetEntryResponse:
    try:
        payload = IncomePayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return store.create_income(payload)


@app.delete("/api/incomes/{income_id}", status_code=204)
def delete_income(income_id: str, store: PortfolioStorage = Depends(get_storage)) -> Response:
    if not store.delete_income(income_id):
        raise HTTPException(status_code=404, detail="Income not found.")
    return Response(status_code=204)


@app.get("/api/expenses", response_model=list[BudgetEntryResponse])
def list_expenses(store: PortfolioStorage = Depends(get_storage)) -> list[BudgetEntryResponse]:
    return store.list_expenses()


@app.get("/api/expenses/{expense_id}", response_model=BudgetEntryResponse)
def get_expense(expense_id: str, store: PortfolioStorage = Depends(get_storage)) -> BudgetEntryResponse:
    expense = store.get_expense(expense_id)
    if not expense:
        raise HTTPException(status_code=404, detail="Expense not found.")
    return expense


@app.post("/api/expenses", response_model=BudgetEntryResponse, status_code=201)
def create_expense(
    payload: ExpensePayload, store: PortfolioStorage = Depends(get_storage)
) -> BudgetEntryResponse:
    try:
        payload = ExpensePayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return store.create_expense(payload)


@app.delete("/api/expenses/{expense_id}", status_code=204)
def delete_expense(expense_id: str, store: PortfolioStorage = Depends(get_storage)) -> Response:
    if not store.delete_expense(expense_id):
        raise HTTPException(status_code=404, detail="Expense not found.")
    return Response(status_code=204)


@app.get("/api/budget/summary", response_model=BudgetSummaryResponse)
def budget_summary(
    start_date: str | None = Query(None, alias="startDate"),
    end_date: str | None = Query(None, alias="endDate"),
    store: PortfolioStorage = Depends(get_storage),
) -> BudgetSummaryResponse:
    start = parse_optional_date(start_date, "startDate")
    end = parse_optional_date(end_date, "endDate")
    try:
        summary = compute_budget_summary(store, start, end)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return BudgetSummaryResponse(
        total_income=summary.total_income,
        total_expense=summary.total_expense,
        balance=summary.balance,
        income_by_category=[
            CategoryTotalResponse(category=c.category, amount=c.amount, percentage=c.percentage)
            for c in summary.income_by_category
        ],
        expense_by_category=[
            CategoryTotalResponse(category=c.category, amount=c.amount, percentage=c.percentage)
            for c in summary.expense_by_category
        ],
    )
