import unittest
from datetime import date
from decimal import Decimal

from fastapi.testclient import TestClient

from portfolio_api.database import create_db_engine, init_db
from portfolio_api.ledger import LedgerEntry, replay_positions
from portfolio_api.main import app, get_price_service, get_storage
from portfolio_api.price_providers import PriceProviderUnavailable
from portfolio_api.price_service import PriceService
from portfolio_api.storage import PortfolioStorage


class FakeProvider:
    def __init__(self, prices=None) -> None:
        self.prices = prices or {}

    def get_price(self, symbol, *args):
        if symbol not in self.prices:
            raise PriceProviderUnavailable(f"no quote for {symbol}")
        return Decimal(self.prices[symbol])


def asset_body(**overrides):
    body = {
        "type": "equity",
        "name": "Turkish Airlines",
        "symbol": "THYAO",
        "market": "BIST",
        "quantity": "0",
        "averagePrice": "0",
        "currentPrice": "100",
        "currency": "TRY",
    }
    body.update(overrides)
    return body


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        engine = create_db_engine("sqlite://")
        init_db(engine)
        self.storage = PortfolioStorage(engine)
        self.prices = PriceService(
            binance=FakeProvider({"BTC": "43000"}),
            yahoo=FakeProvider({"THYAO": "130", "USDTRY=X": "32"}),
            coingecko=FakeProvider(),
        )
        app.dependency_overrides[get_storage] = lambda: self.storage
        app.dependency_overrides[get_price_service] = lambda: self.prices
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def create_asset(self, **overrides) -> dict:
        response = self.client.post("/api/assets", json=asset_body(**overrides))
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()

    def post_transaction(self, asset_id, txn_type, quantity, price, day="2024-01-10"):
        return self.client.post(
            "/api/transactions",
            json={
                "assetId": asset_id,
                "type": txn_type,
                "quantity": quantity,
                "price": price,
                "date": day,
            },
        )


class AssetEndpointTests(ApiTestCase):
    def test_create_get_update_delete(self) -> None:
        created = self.create_asset()

        self.assertIn("averagePrice", created)
        self.assertIn("currentPrice", created)
        self.assertEqual(created["symbol"], "THYAO")

        fetched = self.client.get(f"/api/assets/{created['id']}")
        self.assertEqual(fetched.status_code, 200)
        self.assertEqual(fetched.json()["name"], "Turkish Airlines")

        updated = self.client.patch(
            f"/api/assets/{created['id']}", json={"currentPrice": "150.25"}
        )
        self.assertEqual(updated.status_code, 200)
        self.assertEqual(Decimal(updated.json()["currentPrice"]), Decimal("150.25"))
        self.assertEqual(updated.json()["name"], "Turkish Airlines")

        deleted = self.client.delete(f"/api/assets/{created['id']}")
        self.assertEqual(deleted.status_code, 204)
        self.assertEqual(self.client.get(f"/api/assets/{created['id']}").status_code, 404)
        self.assertEqual(self.client.delete(f"/api/assets/{created['id']}").status_code, 404)

    def test_list_returns_all_assets(self) -> None:
        self.create_asset()
        self.create_asset(type="crypto", name="Bitcoin", symbol="BTC", market="OTHER")

        response = self.client.get("/api/assets")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(sorted(item["symbol"] for item in response.json()), ["BTC", "THYAO"])

    def test_negative_quantity_is_accepted(self) -> None:
        created = self.create_asset(quantity="-3")

        self.assertEqual(Decimal(created["quantity"]), Decimal("-3"))

    def test_invalid_type_is_rejected(self) -> None:
        response = self.client.post("/api/assets", json=asset_body(type="bond"))

        self.assertEqual(response.status_code, 400)

    def test_missing_field_is_rejected(self) -> None:
        body = asset_body()
        del body["name"]

        response = self.client.post("/api/assets", json=body)

        self.assertEqual(response.status_code, 400)

    def test_update_missing_asset_returns_404(self) -> None:
        response = self.client.patch("/api/assets/missing", json={"name": "x"})

        self.assertEqual(response.status_code, 404)


class TransactionEndpointTests(ApiTestCase):
    def test_buys_and_oversell_update_position(self) -> None:
        asset = self.create_asset()

        first = self.post_transaction(asset["id"], "buy", "10", "100")
        self.post_transaction(asset["id"], "buy", "10", "120", day="2024-02-10")

        self.assertEqual(first.status_code, 201)
        self.assertEqual(Decimal(first.json()["totalAmount"]), Decimal("1000"))
        after_buys = self.client.get(f"/api/assets/{asset['id']}").json()
        self.assertEqual(Decimal(after_buys["quantity"]), Decimal("20"))
        self.assertEqual(Decimal(after_buys["averagePrice"]), Decimal("110"))

        self.post_transaction(asset["id"], "sell", "25", "130", day="2024-03-10")

        after_sell = self.client.get(f"/api/assets/{asset['id']}").json()
        self.assertEqual(Decimal(after_sell["quantity"]), Decimal("0"))
        self.assertEqual(Decimal(after_sell["averagePrice"]), Decimal("110"))

    def test_transactions_listed_newest_first_and_per_asset(self) -> None:
        asset = self.create_asset()
        other = self.create_asset(symbol="ASELS", name="Aselsan")
        self.post_transaction(asset["id"], "buy", "1", "10", day="2024-01-01")
        self.post_transaction(asset["id"], "buy", "1", "10", day="2024-03-01")
        self.post_transaction(other["id"], "buy", "1", "10", day="2024-02-01")

        all_rows = self.client.get("/api/transactions").json()
        per_asset = self.client.get(f"/api/assets/{asset['id']}/transactions").json()

        self.assertEqual([row["date"] for row in all_rows], ["2024-03-01", "2024-02-01", "2024-01-01"])
        self.assertEqual(len(per_asset), 2)
        self.assertTrue(all(row["assetId"] == asset["id"] for row in per_asset))

    def test_transaction_for_missing_asset_is_stored(self) -> None:
        response = self.post_transaction("no-such-asset", "buy", "1", "5")

        self.assertEqual(response.status_code, 201)
        fetched = self.client.get(f"/api/transactions/{response.json()['id']}")
        self.assertEqual(fetched.status_code, 200)
        self.assertEqual(self.client.get("/api/assets").json(), [])

    def test_delete_does_not_reverse_position(self) -> None:
        asset = self.create_asset()
        txn = self.post_transaction(asset["id"], "buy", "4", "50").json()

        response = self.client.delete(f"/api/transactions/{txn['id']}")

        self.assertEqual(response.status_code, 204)
        self.assertEqual(self.client.get(f"/api/transactions/{txn['id']}").status_code, 404)
        remaining = self.client.get(f"/api/assets/{asset['id']}").json()
        self.assertEqual(Decimal(remaining["quantity"]), Decimal("4"))

    def test_invalid_transactions_are_rejected(self) -> None:
        asset = self.create_asset()

        self.assertEqual(self.post_transaction(asset["id"], "buy", "0", "5").status_code, 400)
        self.assertEqual(self.post_transaction(asset["id"], "gift", "1", "5").status_code, 400)
        self.assertEqual(
            self.post_transaction(asset["id"], "buy", "1", "5", day="yesterday").status_code, 400
        )

    def test_amounts_finer_than_stored_scale_are_rejected(self) -> None:
        asset = self.create_asset()

        too_small = self.post_transaction(asset["id"], "buy", "0.000000001", "50000")
        too_precise_price = self.post_transaction(asset["id"], "buy", "1", "0.123456789")
        income = self.client.post(
            "/api/incomes",
            json={"category": "salary", "description": "Pay", "amount": "10.005", "date": "2024-01-01"},
        )

        self.assertEqual(too_small.status_code, 400)
        self.assertEqual(too_precise_price.status_code, 400)
        self.assertEqual(income.status_code, 400)
        self.assertEqual(self.client.get("/api/transactions").json(), [])
        unchanged = self.client.get(f"/api/assets/{asset['id']}").json()
        self.assertEqual(Decimal(unchanged["quantity"]), Decimal("0"))

    def test_stored_average_matches_replayed_history(self) -> None:
        asset = self.create_asset()
        for n in (1, 2, 3):
            self.post_transaction(asset["id"], "buy", str(n), str(n), day=f"2024-01-0{n}")

        stored = self.client.get(f"/api/assets/{asset['id']}").json()
        history = [
            LedgerEntry(
                asset_id=row["assetId"],
                type=row["type"],
                quantity=Decimal(row["quantity"]),
                price=Decimal(row["price"]),
                date=date.fromisoformat(row["date"]),
            )
            for row in self.client.get("/api/transactions").json()
        ]
        replayed = replay_positions(history)[asset["id"]]

        self.assertEqual(Decimal(stored["quantity"]), replayed.quantity)
        self.assertEqual(Decimal(stored["averagePrice"]), replayed.average_price)
        self.assertEqual(replayed.average_price, Decimal("2.33333334"))


class PortfolioEndpointTests(ApiTestCase):
    def test_summary_allocation_and_details(self) -> None:
        self.create_asset(quantity="10", averagePrice="100", currentPrice="120")
        self.create_asset(
            type="crypto", name="Bitcoin", symbol="BTC", market="OTHER",
            quantity="1", averagePrice="300", currentPrice="400",
        )
        self.client.post(
            "/api/incomes",
            json={"category": "salary", "description": "Pay", "amount": "500", "date": "2024-01-01"},
        )

        summary = self.client.get("/api/portfolio/summary").json()
        allocation = self.client.get("/api/portfolio/allocation").json()
        details = self.client.get("/api/portfolio/details").json()

        self.assertEqual(Decimal(summary["investmentValue"]), Decimal("1600"))
        self.assertEqual(Decimal(summary["cashBalance"]), Decimal("500"))
        self.assertEqual(Decimal(summary["totalAssets"]), Decimal("2100"))
        self.assertEqual(Decimal(summary["totalDebt"]), Decimal("0"))
        self.assertEqual(Decimal(summary["netWorth"]), Decimal("2100"))
        self.assertEqual([item["type"] for item in allocation], ["equity", "crypto"])
        self.assertEqual(Decimal(allocation[0]["percentage"]), Decimal("75"))
        by_symbol = {item["symbol"]: item for item in details}
        self.assertEqual(Decimal(by_symbol["THYAO"]["profit"]), Decimal("200"))
        self.assertEqual(Decimal(by_symbol["BTC"]["totalValue"]), Decimal("400"))

    def test_performance_has_twelve_months(self) -> None:
        response = self.client.get("/api/portfolio/performance")

        self.assertEqual(response.status_code, 200)
        points = response.json()
        self.assertEqual(len(points), 12)
        self.assertEqual(sorted(point["month"] for point in points), [p["month"] for p in points])


class PriceEndpointTests(ApiTestCase):
    def test_refresh_reports_each_asset(self) -> None:
        thyao = self.create_asset()
        coin = self.create_asset(type="crypto", name="Nothing", symbol="NOTACOIN", market="OTHER")

        response = self.client.post("/api/prices/update")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["total"], 2)
        self.assertEqual(body["updated"], 1)
        self.assertEqual(body["failed"], 1)
        failed = [item for item in body["results"] if not item["success"]]
        self.assertEqual(failed[0]["assetId"], coin["id"])
        self.assertIsNone(failed[0]["newPrice"])
        refreshed = self.client.get(f"/api/assets/{thyao['id']}").json()
        self.assertEqual(Decimal(refreshed["currentPrice"]), Decimal("130"))

    def test_lookup_requires_type_and_market(self) -> None:
        self.assertEqual(self.client.get("/api/prices/BTC").status_code, 400)
        self.assertEqual(self.client.get("/api/prices/BTC?type=crypto").status_code, 400)

    def test_lookup_found_and_missing(self) -> None:
        found = self.client.get("/api/prices/BTC?type=crypto&market=OTHER")
        missing = self.client.get("/api/prices/NOTACOIN?type=crypto&market=OTHER")

        self.assertEqual(found.status_code, 200)
        self.assertEqual(Decimal(found.json()["price"]), Decimal("43000"))
        self.assertEqual(missing.status_code, 404)

    def test_exchange_rates_are_try_based(self) -> None:
        response = self.client.get("/api/exchange-rates")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["base"], "TRY")
        self.assertEqual(Decimal(body["rates"]["USD"]), Decimal("32"))
        self.assertEqual(Decimal(body["rates"]["BTC"]), Decimal("1376000"))
        self.assertIn("updatedAt", body)


class BudgetEndpointTests(ApiTestCase):
    def add(self, kind, category, amount, day):
        response = self.client.post(
            f"/api/{kind}",
            json={"category": category, "description": category.title(), "amount": amount, "date": day},
        )
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()

    def test_income_and_expense_crud(self) -> None:
        income = self.add("incomes", "salary", "3000", "2024-01-01")
        expense = self.add("expenses", "groceries", "200", "2024-01-02")

        self.assertFalse(income["isRecurring"])
        self.assertEqual(self.client.get(f"/api/incomes/{income['id']}").status_code, 200)
        self.assertEqual(len(self.client.get("/api/expenses").json()), 1)
        self.assertEqual(self.client.delete(f"/api/expenses/{expense['id']}").status_code, 204)
        self.assertEqual(self.client.get(f"/api/expenses/{expense['id']}").status_code, 404)
        self.assertEqual(self.client.delete("/api/incomes/missing").status_code, 404)

    def test_wrong_category_for_kind_is_rejected(self) -> None:
        response = self.client.post(
            "/api/incomes",
            json={"category": "groceries", "description": "x", "amount": "1", "date": "2024-01-01"},
        )

        self.assertEqual(response.status_code, 400)

    def test_summary_respects_inclusive_range(self) -> None:
        self.add("incomes", "salary", "3000", "2024-01-01")
        self.add("incomes", "rent", "500", "2024-01-31")
        self.add("expenses", "bills", "100", "2024-02-01")
        self.add("expenses", "dining", "50", "2024-01-15")

        everything = self.client.get("/api/budget/summary").json()
        january = self.client.get(
            "/api/budget/summary?startDate=2024-01-15&endDate=2024-01-31"
        ).json()

        self.assertEqual(Decimal(everything["balance"]), Decimal("3350"))
        self.assertEqual(Decimal(january["totalIncome"]), Decimal("500"))
        self.assertEqual(Decimal(january["totalExpense"]), Decimal("50"))
        self.assertEqual([c["category"] for c in january["incomeByCategory"]], ["rent"])
        self.assertEqual(Decimal(january["expenseByCategory"][0]["percentage"]), Decimal("100"))

    def test_summary_rejects_bad_ranges(self) -> None:
        reversed_range = self.client.get(
            "/api/budget/summary?startDate=2024-02-01&endDate=2024-01-01"
        )
        bad_date = self.client.get("/api/budget/summary?startDate=soon")

        self.assertEqual(reversed_range.status_code, 400)
        self.assertEqual(bad_date.status_code, 400)


class MiscEndpointTests(ApiTestCase):
    def test_health_and_categories(self) -> None:
        self.assertEqual(self.client.get("/health").json(), {"status": "ok"})
        categories = self.client.get("/api/categories").json()
        self.assertIn("real_estate", categories["assetTypes"])
        self.assertIn("groceries", categories["expenseCategories"])


if __name__ == "__main__":
    unittest.main()
