from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
import json
import re
from typing import Any, Mapping
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

DEFAULT_TIMEOUT_SECONDS = 8.0
BROWSER_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

MARKET_SUFFIXES = {
    "BIST": ".IS",
    "US": "",
}


class PriceProviderUnavailable(RuntimeError):
    """Raised when a quote provider cannot return a usable price."""


@dataclass
class JsonQuoteProvider:
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    headers: Mapping[str, str] = field(default_factory=dict)

    name = "json"

    def _fetch_json(self, url: str) -> Any:
        request = Request(url, headers=dict(self.headers))
        try:
            with urlopen(request, timeout=self.timeout_seconds) as response:
                return json.load(response)
        except HTTPError as exc:
            raise PriceProviderUnavailable(
                f"{self.name} returned HTTP {exc.code}"
            ) from exc
        except (URLError, TimeoutError, OSError, ValueError) as exc:
            raise PriceProviderUnavailable(f"{self.name} unavailable") from exc


@dataclass
class BinancePriceProvider(JsonQuoteProvider):
    """Spot price from the Binance ticker endpoint, quoted in USDT."""

    base_url: str = "https://api.binance.com/api/v3/ticker/price"
    quote_asset: str = "USDT"

    name = "binance"

    def get_price(self, symbol: str) -> Decimal:
        pair = binance_symbol(symbol, self.quote_asset)
        payload = self._fetch_json(f"{self.base_url}?{urlencode({'symbol': pair})}")
        if not isinstance(payload, dict):
            raise PriceProviderUnavailable("Binance response is not an object")
        return _positive_decimal(payload.get("price"), self.name)


@dataclass
class YahooChartProvider(JsonQuoteProvider):
    """Last regular-market price from the Yahoo Finance chart endpoint."""

    base_url: str = "https://query1.finance.yahoo.com/v8/finance/chart"
    headers: Mapping[str, str] = field(
        default_factory=lambda: {"User-Agent": BROWSER_USER_AGENT}
    )

    name = "yahoo"

    def get_price(self, symbol: str, market: str | None = None) -> Decimal:
        ticker = yahoo_symbol(symbol, market)
        url = f"{self.base_url}/{quote(ticker)}?{urlencode({'interval': '1d', 'range': '1d'})}"
        payload = self._fetch_json(url)

        chart = payload.get("chart") if isinstance(payload, dict) else None
        if not isinstance(chart, dict):
            raise PriceProviderUnavailable("Yahoo response missing chart")
        error = chart.get("error")
        if error:
            description = error.get("description") if isinstance(error, dict) else error
            raise PriceProviderUnavailable(f"Yahoo error: {description}")
        results = chart.get("result") or []
        if not isinstance(results, list) or not results or not isinstance(results[0], dict):
            raise PriceProviderUnavailable("Yahoo response missing result")
        meta = results[0].get("meta")
        if not isinstance(meta, dict):
            raise PriceProviderUnavailable("Yahoo response missing meta")
        return _positive_decimal(meta.get("regularMarketPrice"), self.name)


@dataclass
class CoinGeckoProvider(JsonQuoteProvider):
    """USD price by CoinGecko coin id (e.g. ``bitcoin``)."""

    base_url: str = "https://api.coingecko.com/api/v3/simple/price"
    vs_currency: str = "usd"
    headers: Mapping[str, str] = field(
        default_factory=lambda: {"Accept": "application/json"}
    )

    name = "coingecko"

    def get_price(self, coin_id: str) -> Decimal:
        query = urlencode({"ids": coin_id, "vs_currencies": self.vs_currency})
        payload = self._fetch_json(f"{self.base_url}?{query}")
        if not isinstance(payload, dict):
            raise PriceProviderUnavailable("CoinGecko response is not an object")
        coin = payload.get(coin_id)
        if not isinstance(coin, dict):
            raise PriceProviderUnavailable(f"CoinGecko has no quote for {coin_id}")
        return _positive_decimal(coin.get(self.vs_currency), self.name)


def binance_symbol(symbol: str, quote_asset: str = "USDT") -> str:
    # keep digits so pairs like 1INCH or SHIB1000 survive
    return re.sub(r"[^A-Z0-9]", "", symbol.upper()) + quote_asset


def yahoo_symbol(symbol: str, market: str | None) -> str:
    normalized_market = (market or "").strip().upper()
    if normalized_market in MARKET_SUFFIXES:
        return symbol.strip().upper() + MARKET_SUFFIXES[normalized_market]
    return symbol.strip()


def _positive_decimal(value: Any, provider: str) -> Decimal:
    if value is None or isinstance(value, bool):
        raise PriceProviderUnavailable(f"{provider} response missing price")
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise PriceProviderUnavailable(f"{provider} returned an invalid price") from exc
    if not parsed.is_finite() or parsed <= 0:
        raise PriceProviderUnavailable(f"{provider} returned a non-positive price")
    return parsed
