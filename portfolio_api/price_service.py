"""Best-effort price lookups on top of the quote providers.

Every public function here returns ``None`` (or omits a key) when a provider
fails. Provider errors are logged and never propagated to the caller.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
import logging
from typing import Callable, Dict, List, Optional, Protocol

from portfolio_api.price_providers import (
    BinancePriceProvider,
    CoinGeckoProvider,
    PriceProviderUnavailable,
    YahooChartProvider,
)

logger = logging.getLogger(__name__)

TROY_OUNCE_GRAMS = Decimal("31.1035")
CRYPTO_RATE_COINS = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
}
USD_TRY_TICKER = "USDTRY=X"
EUR_TRY_TICKER = "EURTRY=X"
GOLD_FUTURES_TICKER = "GC=F"


class PricedAsset(Protocol):
    id: str
    symbol: str
    type: str
    market: str
    current_price: Decimal


@dataclass(frozen=True)
class PriceUpdateResult:
    asset_id: str
    symbol: str
    old_price: Decimal
    new_price: Optional[Decimal]
    success: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class PriceUpdateReport:
    results: List[PriceUpdateResult]

    @property
    def updated(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def failed(self) -> int:
        return len(self.results) - self.updated


@dataclass
class PriceService:
    binance: BinancePriceProvider = field(default_factory=BinancePriceProvider)
    yahoo: YahooChartProvider = field(default_factory=YahooChartProvider)
    coingecko: CoinGeckoProvider = field(default_factory=CoinGeckoProvider)

    def crypto_price(self, symbol: str) -> Optional[Decimal]:
        return self._safe_fetch(self.binance.get_price, symbol)

    def market_price(self, symbol: str, market: str | None) -> Optional[Decimal]:
        return self._safe_fetch(self.yahoo.get_price, symbol, market)

    def coingecko_price(self, coin_id: str) -> Optional[Decimal]:
        return self._safe_fetch(self.coingecko.get_price, coin_id)

    def lookup_price(self, symbol: str, asset_type: str, market: str | None) -> Optional[Decimal]:
        """Current price for one symbol, or ``None`` when nothing is available.

        Real estate has no external quote, so it always yields ``None`` here.
        """
        normalized = asset_type.strip().lower()
        if normalized == "crypto":
            return self.crypto_price(symbol)
        if normalized in {"equity", "etf"}:
            return self.market_price(symbol, market)
        return None

    def refresh_prices(
        self,
        assets: List[PricedAsset],
        save_price: Callable[[str, Decimal], object],
    ) -> PriceUpdateReport:
        """Refresh every asset one after another.

        ``save_price`` is called for each strictly positive result. A failure on
        one asset is recorded in its result and the loop moves on.
        """
        results: List[PriceUpdateResult] = []
        for asset in assets:
            old_price = asset.current_price or Decimal("0")
            new_price: Optional[Decimal] = None
            error: Optional[str] = None
            try:
                if asset.type == "real_estate":
                    new_price = old_price
                else:
                    new_price = self.lookup_price(asset.symbol, asset.type, asset.market)
                if new_price is not None and new_price > 0:
                    save_price(asset.id, new_price)
                elif new_price is None:
                    error = "No price available"
            except Exception as exc:
                logger.exception("Price update failed for %s", asset.symbol)
                error = str(exc) or type(exc).__name__

            success = error is None and new_price is not None and new_price > 0
            results.append(
                PriceUpdateResult(
                    asset_id=asset.id,
                    symbol=asset.symbol,
                    old_price=old_price,
                    new_price=new_price,
                    success=success,
                    error=error,
                )
            )

        report = PriceUpdateReport(results=results)
        logger.info(
            "Price refresh finished: %s updated, %s failed", report.updated, report.failed
        )
        return report

    def exchange_rates(self) -> Dict[str, Decimal]:
        """Value of one unit of each currency in TRY.

        XAU is priced per gram. A leg that cannot be fetched is left out.
        """
        rates: Dict[str, Decimal] = {"TRY": Decimal("1")}

        usd_try = self.market_price(USD_TRY_TICKER, None)
        if usd_try is not None:
            rates["USD"] = usd_try
        eur_try = self.market_price(EUR_TRY_TICKER, None)
        if eur_try is not None:
            rates["EUR"] = eur_try

        for code, coin_id in CRYPTO_RATE_COINS.items():
            usd_price = self.crypto_price(code)
            if usd_price is None:
                usd_price = self.coingecko_price(coin_id)
            if usd_price is not None and usd_try is not None:
                rates[code] = usd_price * usd_try

        gold_ounce_usd = self.market_price(GOLD_FUTURES_TICKER, None)
        if gold_ounce_usd is not None and usd_try is not None:
            rates["XAU"] = gold_ounce_usd / TROY_OUNCE_GRAMS * usd_try

        return rates

    def _safe_fetch(self, fetch: Callable[..., Decimal], *args) -> Optional[Decimal]:
        try:
            return fetch(*args)
        except PriceProviderUnavailable as exc:
            logger.warning("Price lookup failed for %s: %s", args[0], exc)
            return None
