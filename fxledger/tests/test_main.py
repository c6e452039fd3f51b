import unittest
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from fxledger.errors import NetworkError
from fxledger.main import create_app
from fxledger.rate_cache import InMemoryRateStore, RateCache
from fxledger.rate_provider import RateProvider
from fxledger.settings import Settings

NOW = datetime(2024, 5, 20, 9, 0, tzinfo=timezone.utc)

PAYLOAD = {
    "result": "success",
    "base_code": "USD",
    "rates": {"USD": 1, "EUR": 0.9, "GBP": 0.8},
}


class FakeTransport:
    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.calls = 0

    async def get_json(self, url):
        self.calls += 1
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class ApiTests(unittest.TestCase):
    def make_client(self, *responses) -> TestClient:
        self.cache = RateCache(InMemoryRateStore(), clock=lambda: NOW)
        self.transport = FakeTransport(*responses)
        provider = RateProvider(self.cache, transport=self.transport)
        app = create_app(Settings(default_currency="USD"), provider=provider)
        return TestClient(app)

    def test_health(self) -> None:
        client = self.make_client()

        self.assertEqual(client.get("/health").json(), {"status": "ok"})

    def test_rates_are_cached_between_requests(self) -> None:
        client = self.make_client((200, PAYLOAD))

        first = client.get("/rates/usd")
        second = client.get("/rates/USD")

        self.assertEqual(first.status_code, 200)
        self.assertFalse(first.json()["from_cache"])
        self.assertTrue(second.json()["from_cache"])
        self.assertEqual(second.json()["rates"]["EUR"], "0.9")
        self.assertEqual(self.transport.calls, 1)

    def test_refresh_falls_back_to_stale_rates(self) -> None:
        client = self.make_client(NetworkError("offline"))
        self.cache.put("USD", {"USD": 1, "EUR": 0.95}, NOW - timedelta(days=3))

        response = client.post("/rates/USD/refresh")

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["stale"])

    def test_cold_cache_outage_is_503(self) -> None:
        client = self.make_client(NetworkError("offline"))

        response = client.get("/rates/USD")

        self.assertEqual(response.status_code, 503)

    def test_invalid_base_is_400(self) -> None:
        client = self.make_client()

        self.assertEqual(client.get("/rates/DOLLARS").status_code, 400)

    def test_balances(self) -> None:
        client = self.make_client((200, PAYLOAD))

        response = client.post(
            "/balances",
            json={
                "accounts": [
                    {"id": "a", "currency": "USD", "initial_balance": 10000},
                    {"id": "b", "currency": "EUR"},
                ],
                "transactions": [
                    {
                        "id": 1,
                        "type": "transfer",
                        "amount": 500,
                        "currency": "GBP",
                        "date": "2024-05-02",
                        "account_id": "a",
                        "to_account_id": "b",
                    }
                ],
            },
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["balances"], {"a": 9375, "b": 563})
        self.assertEqual(body["total"], 9375 + 626)
        self.assertEqual(body["currency"], "USD")
        self.assertFalse(body["rates_stale"])

    def test_balances_reject_invalid_transfers(self) -> None:
        client = self.make_client((200, PAYLOAD))

        response = client.post(
            "/balances",
            json={
                "accounts": [{"id": "a", "currency": "USD"}],
                "transactions": [
                    {
                        "type": "transfer",
                        "amount": 500,
                        "currency": "USD",
                        "date": "2024-05-02",
                        "account_id": "a",
                        "to_account_id": "a",
                    }
                ],
            },
        )

        self.assertEqual(response.status_code, 400)

    def test_stats_compare_with_previous_month(self) -> None:
        client = self.make_client((200, PAYLOAD))

        response = client.post(
            "/stats",
            json={
                "preset": "month",
                "today": "2024-05-20",
                "transactions": [
                    {"type": "income", "amount": 1000, "currency": "EUR", "date": "2024-05-01", "account_id": "a"},
                    {"type": "expense", "amount": 2500, "currency": "USD", "date": "2024-05-15", "account_id": "a"},
                    {"type": "expense", "amount": 2000, "currency": "USD", "date": "2024-04-10", "account_id": "a"},
                ],
            },
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["current"]["income"], 1111)
        self.assertEqual(body["current"]["net"], 1111 - 2500)
        self.assertEqual(body["current"]["count"], 2)
        self.assertEqual(body["previous"]["start"], "2024-04-01")
        self.assertEqual(body["previous"]["expense"], 2000)
        self.assertEqual(body["income_change"], 100.0)
        self.assertEqual(body["expense_change"], 25.0)
        self.assertAlmostEqual(body["net_change"], 30.55)


if __name__ == "__main__":
    unittest.main()
