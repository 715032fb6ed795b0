# tests/test_items_api.py

"""Tests for the items API fallback client."""

import json
import unittest
from unittest.mock import MagicMock

from src.config.settings import Settings
from src.models.session import BEARER_MODE, SessionCredential
from src.scrapers.errors import FetchError
from src.scrapers.fetcher import Fetcher, FetchResponse
from src.scrapers.items_api import ItemsApiClient

API_URL = "https://api.mercadolibre.com/items/MLB1234567890"
TOKEN = SessionCredential("APP_USR-1", BEARER_MODE)


class TestItemsApiClient(unittest.TestCase):

    def setUp(self) -> None:
        self.fetcher = MagicMock(spec=Fetcher)
        self.settings = Settings()
        self.settings.API_FALLBACK = True

    def _reply(self, status: int, body: object) -> None:
        text = body if isinstance(body, str) else json.dumps(body)
        self.fetcher.fetch.return_value = FetchResponse(
            API_URL, API_URL, status, text,
        )

    def test_disabled_without_bearer_token(self) -> None:
        client = ItemsApiClient(
            self.fetcher, SessionCredential("ssid=abc"), self.settings,
        )
        self.assertFalse(client.enabled)
        self.assertIsNone(client.fetch_price("MLB1234567890"))
        self.fetcher.fetch.assert_not_called()

    def test_disabled_by_setting(self) -> None:
        self.settings.API_FALLBACK = False
        client = ItemsApiClient(self.fetcher, TOKEN, self.settings)
        self.assertFalse(client.enabled)

    def test_reads_price(self) -> None:
        self._reply(200, {
            "id": "MLB1234567890",
            "price": 259.9,
            "original_price": 299.9,
            "currency_id": "BRL",
        })
        client = ItemsApiClient(self.fetcher, TOKEN, self.settings)
        result = client.fetch_price("MLB1234567890")
        assert result is not None
        self.assertEqual(result.price, 259.9)
        self.assertEqual(result.original_price, 299.9)
        self.assertEqual(result.evidence_kind, "api")
        self.assertFalse(result.is_weak)
        self.fetcher.fetch.assert_called_once_with(API_URL, TOKEN)

    def test_misses(self) -> None:
        client = ItemsApiClient(self.fetcher, TOKEN, self.settings)
        for status, body in (
            (404, {"message": "not found"}),
            (200, "<html>oops</html>"),
            (200, {"price": None}),
            (200, [1, 2]),
        ):
            with self.subTest(status=status, body=body):
                self._reply(status, body)
                self.assertIsNone(client.fetch_price("MLB1234567890"))

    def test_fetch_error(self) -> None:
        self.fetcher.fetch.side_effect = FetchError(API_URL, "reset")
        client = ItemsApiClient(self.fetcher, TOKEN, self.settings)
        self.assertIsNone(client.fetch_price("MLB1234567890"))


if __name__ == "__main__":
    unittest.main()
