from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    MetaData,
    Numeric,
    String,
    Table,
    create_engine,
    func,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

metadata = MetaData()

assets = Table(
    "assets",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("type", String(20), nullable=False),
    Column("name", String(255), nullable=False),
    Column("symbol", String(50), nullable=False),
    Column("market", String(20), nullable=False),
    Column("quantity", Numeric(18, 8), nullable=False, server_default="0"),
    Column("average_price", Numeric(18, 8), nullable=False),
    Column("current_price", Numeric(18, 8), nullable=False),
    Column("currency", String(3), nullable=False, server_default="TRY"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

# asset_id has no foreign key; deleting an asset leaves its transactions.
transactions = Table(
    "transactions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("asset_id", String(36), nullable=False, index=True),
    Column("type", String(10), nullable=False),
    Column("quantity", Numeric(18, 8), nullable=False),
    Column("price", Numeric(18, 8), nullable=False),
    Column("total_amount", Numeric(18, 2), nullable=False),
    Column("currency", String(3), nullable=False, server_default="TRY"),
    Column("notes", String(500)),
    Column("date", Date, nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

incomes = Table(
    "incomes",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("category", String(50), nullable=False),
    Column("description", String(500), nullable=False),
    Column("amount", Numeric(18, 2), nullable=False),
    Column("currency", String(3), nullable=False, server_default="TRY"),
    Column("date", Date, nullable=False),
    Column("is_recurring", Boolean, nullable=False, server_default="0"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

expenses = Table(
    "expenses",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("category", String(50), nullable=False),
    Column("description", String(500), nullable=False),
    Column("amount", Numeric(18, 2), nullable=False),
    Column("currency", String(3), nullable=False, server_default="TRY"),
    Column("date", Date, nullable=False),
    Column("is_recurring", Boolean, nullable=False, server_default="0"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)


def create_db_engine(database_url: str) -> Engine:
    connect_args = {}
    kwargs = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if ":memory:" in database_url or database_url == "sqlite://":
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, connect_args=connect_args, **kwargs)


def init_db(engine: Engine) -> None:
    metadata.create_all(engine)
