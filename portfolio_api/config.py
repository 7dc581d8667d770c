from __future__ import annotations

import os

SUPPORTED_CURRENCIES = ("TRY", "USD", "EUR")


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if normalized not in SUPPORTED_CURRENCIES:
        raise ValueError(
            f"Currency must be one of: {', '.join(SUPPORTED_CURRENCIES)}."
        )
    return normalized


def get_system_default_currency() -> str:
    raw = os.getenv("DEFAULT_CURRENCY", "TRY")
    try:
        return normalize_currency(raw)
    except ValueError:
        return "TRY"


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./portfolio.db")
FRONTEND_ORIGIN = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
SYSTEM_DEFAULT_CURRENCY = get_system_default_currency()
PRICE_REQUEST_TIMEOUT = float(os.getenv("PRICE_REQUEST_TIMEOUT", "8"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_DIR = os.getenv("LOG_DIR") or None

API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))
