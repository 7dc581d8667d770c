from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
import logging
from typing import Any, Optional
import uuid

from sqlalchemy import Table, insert, select, update
from sqlalchemy.engine import Engine

from portfolio_api.config import SYSTEM_DEFAULT_CURRENCY
from portfolio_api.database import assets, expenses, incomes, transactions
from portfolio_api.ledger import Position, apply_transaction
from portfolio_api.schemas import (
    AssetPayload,
    AssetResponse,
    BudgetEntryPayload,
    BudgetEntryResponse,
    TransactionPayload,
    TransactionResponse,
)

logger = logging.getLogger(__name__)


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PortfolioStorage:
    """CRUD over assets, transactions, incomes and expenses.

    Lookups of a missing id return ``None`` (or ``False`` for deletes) and
    leave the database untouched.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # Assets

    def list_assets(self) -> list[AssetResponse]:
        stmt = select(assets).order_by(assets.c.created_at.asc())
        with self.engine.begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [AssetResponse(**row) for row in rows]

    def get_asset(self, asset_id: str) -> Optional[AssetResponse]:
        with self.engine.begin() as conn:
            row = conn.execute(
                select(assets).where(assets.c.id == asset_id)
            ).mappings().first()
        return AssetResponse(**row) if row else None

    def create_asset(self, payload: AssetPayload) -> AssetResponse:
        stmt = (
            insert(assets)
            .values(
                id=new_id(),
                type=payload.type,
                name=payload.name,
                symbol=payload.symbol,
                market=payload.market,
                quantity=payload.quantity,
                average_price=payload.average_price,
                current_price=payload.current_price,
                currency=payload.currency or SYSTEM_DEFAULT_CURRENCY,
                created_at=utcnow(),
            )
            .returning(*assets.c)
        )
        with self.engine.begin() as conn:
            row = conn.execute(stmt).mappings().one()
        logger.info("Created asset %s (%s)", row["id"], row["symbol"])
        return AssetResponse(**row)

    def update_asset(self, asset_id: str, changes: dict[str, Any]) -> Optional[AssetResponse]:
        if not changes:
            return self.get_asset(asset_id)
        stmt = (
            update(assets)
            .where(assets.c.id == asset_id)
            .values(**changes)
            .returning(*assets.c)
        )
        with self.engine.begin() as conn:
            row = conn.execute(stmt).mappings().first()
        return AssetResponse(**row) if row else None

    def update_asset_price(self, asset_id: str, price: Decimal) -> Optional[AssetResponse]:
        return self.update_asset(asset_id, {"current_price": price})

    def delete_asset(self, asset_id: str) -> bool:
        return self._delete(assets, asset_id)

    # Transactions

    def list_transactions(self, chronological: bool = False) -> list[TransactionResponse]:
        if chronological:
            order = (transactions.c.date.asc(), transactions.c.created_at.asc())
        else:
            order = (transactions.c.date.desc(), transactions.c.created_at.desc())
        with self.engine.begin() as conn:
            rows = conn.execute(select(transactions).order_by(*order)).mappings().all()
        return [TransactionResponse(**row) for row in rows]

    def get_transaction(self, transaction_id: str) -> Optional[TransactionResponse]:
        with self.engine.begin() as conn:
            row = conn.execute(
                select(transactions).where(transactions.c.id == transaction_id)
            ).mappings().first()
        return TransactionResponse(**row) if row else None

    def list_transactions_by_asset(self, asset_id: str) -> list[TransactionResponse]:
        stmt = (
            select(transactions)
            .where(transactions.c.asset_id == asset_id)
            .order_by(transactions.c.date.desc(), transactions.c.created_at.desc())
        )
        with self.engine.begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [TransactionResponse(**row) for row in rows]

    def create_transaction(self, payload: TransactionPayload) -> TransactionResponse:
        """Insert the transaction and fold it into the asset's position.

        A transaction whose asset does not exist is still stored; only the
        position update is skipped.
        """
        stmt = (
            insert(transactions)
            .values(
                id=new_id(),
                asset_id=payload.asset_id,
                type=payload.type,
                quantity=payload.quantity,
                price=payload.price,
                total_amount=payload.total_amount,
                currency=payload.currency or SYSTEM_DEFAULT_CURRENCY,
                notes=payload.notes,
                date=payload.date,
                created_at=utcnow(),
            )
            .returning(*transactions.c)
        )
        with self.engine.begin() as conn:
            row = conn.execute(stmt).mappings().one()
            asset_row = conn.execute(
                select(assets.c.quantity, assets.c.average_price).where(
                    assets.c.id == payload.asset_id
                )
            ).mappings().first()
            if asset_row:
                position = apply_transaction(
                    Position(
                        quantity=asset_row["quantity"] or Decimal("0"),
                        average_price=asset_row["average_price"] or Decimal("0"),
                    ),
                    payload.type,
                    payload.quantity,
                    payload.price,
                )
                conn.execute(
                    update(assets)
                    .where(assets.c.id == payload.asset_id)
                    .values(
                        quantity=position.quantity,
                        average_price=position.average_price,
                    )
                )
            else:
                logger.warning(
                    "Transaction %s references unknown asset %s; position not updated",
                    row["id"],
                    payload.asset_id,
                )
        logger.info("Created %s transaction %s", row["type"], row["id"])
        return TransactionResponse(**row)

    def delete_transaction(self, transaction_id: str) -> bool:
        return self._delete(transactions, transaction_id)

    # Incomes / expenses

    def list_incomes(self) -> list[BudgetEntryResponse]:
        return self._list_budget_entries(incomes)

    def get_income(self, income_id: str) -> Optional[BudgetEntryResponse]:
        return self._get_budget_entry(incomes, income_id)

    def create_income(self, payload: BudgetEntryPayload) -> BudgetEntryResponse:
        return self._create_budget_entry(incomes, payload)

    def delete_income(self, income_id: str) -> bool:
        return self._delete(incomes, income_id)

    def list_expenses(self) -> list[BudgetEntryResponse]:
        return self._list_budget_entries(expenses)

    def get_expense(self, expense_id: str) -> Optional[BudgetEntryResponse]:
        return self._get_budget_entry(expenses, expense_id)

    def create_expense(self, payload: BudgetEntryPayload) -> BudgetEntryResponse:
        return self._create_budget_entry(expenses, payload)

    def delete_expense(self, expense_id: str) -> bool:
        return self._delete(expenses, expense_id)

    def _list_budget_entries(self, table: Table) -> list[BudgetEntryResponse]:
        stmt = select(table).order_by(table.c.date.desc(), table.c.created_at.desc())
        with self.engine.begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [BudgetEntryResponse(**row) for row in rows]

    def _get_budget_entry(self, table: Table, entry_id: str) -> Optional[BudgetEntryResponse]:
        with self.engine.begin() as conn:
            row = conn.execute(select(table).where(table.c.id == entry_id)).mappings().first()
        return BudgetEntryResponse(**row) if row else None

    def _create_budget_entry(self, table: Table, payload: BudgetEntryPayload) -> BudgetEntryResponse:
        stmt = (
            insert(table)
            .values(
                id=new_id(),
                category=payload.category,
                description=payload.description,
                amount=payload.amount,
                currency=payload.currency or SYSTEM_DEFAULT_CURRENCY,
                date=payload.date,
                is_recurring=payload.is_recurring,
                created_at=utcnow(),
            )
            .returning(*table.c)
        )
        with self.engine.begin() as conn:
            row = conn.execute(stmt).mappings().one()
        logger.info("Created %s entry %s", table.name, row["id"])
        return BudgetEntryResponse(**row)

    def _delete(self, table: Table, row_id: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(table.delete().where(table.c.id == row_id))
        deleted = result.rowcount > 0
        if deleted:
            logger.info("Deleted %s row %s", table.name, row_id)
        return deleted
