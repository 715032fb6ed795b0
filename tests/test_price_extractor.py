# tests/test_price_extractor.py

"""Tests for price parsing and the extraction strategy chain."""

import json
import unittest
from typing import Any

from src.models.price_observation import (
    EVIDENCE_JSON_LD,
    EVIDENCE_META,
    EVIDENCE_NEXT_DATA,
    EVIDENCE_PRELOADED_STATE,
    EVIDENCE_REGEX,
)
from src.scrapers.price_extractor import (
    PriceExtractor,
    find_price_node,
    parse_price,
)


def _page(head: str = "", body: str = "") -> str:
    return f"<html><head>{head}</head><body>{body}</body></html>"


META_PRICE = (
    '<meta itemprop="price" content="199.90">'
    '<meta itemprop="priceCurrency" content="BRL">'
)
JSON_LD_PRICE = (
    '<script type="application/ld+json">'
    + json.dumps({
        "@context": "https://schema.org",
        "@type": "Product",
        "name": "Fone Bluetooth",
        "offers": {"@type": "Offer", "price": "149.50", "priceCurrency": "BRL"},
    })
    + "</script>"
)
NEXT_DATA_PRICE = (
    '<script id="__NEXT_DATA__" type="application/json">'
    + json.dumps({
        "props": {"pageProps": {"item": {"price": 88.0, "currency_id": "BRL"}}}
    })
    + "</script>"
)


class TestParsePrice(unittest.TestCase):
    """Locale-tolerant price parsing."""

    def test_comma_decimal_with_dot_thousands(self) -> None:
        """Brazilian format: last separator is the decimal point."""
        self.assertAlmostEqual(parse_price("1.234,56"), 1234.56)

    def test_dot_decimal_with_comma_thousands(self) -> None:
        """US format: last separator is the decimal point."""
        self.assertAlmostEqual(parse_price("1,234.56"), 1234.56)

    def test_single_comma_is_decimal(self) -> None:
        self.assertAlmostEqual(parse_price("199,90"), 199.90)

    def test_single_dot_is_decimal(self) -> None:
        self.assertAlmostEqual(parse_price("199.90"), 199.90)

    def test_repeated_separator_is_thousands(self) -> None:
        """Only one kind of separator, repeated: thousands grouping."""
        self.assertEqual(parse_price("1.234.567"), 1234567.0)
        self.assertEqual(parse_price("1,234,567"), 1234567.0)

    def test_currency_symbol_stripped(self) -> None:
        self.assertAlmostEqual(parse_price("R$ 2.499,00"), 2499.0)

    def test_numbers_pass_through(self) -> None:
        self.assertEqual(parse_price(42), 42.0)
        self.assertEqual(parse_price(19.9), 19.9)

    def test_rejects_non_positive_and_junk(self) -> None:
        """Zero, negatives, NaN, infinity, bools and text all map to None."""
        for value in (0, "0,00", -5, "-12.50", float("nan"),
                      float("inf"), True, "grátis", "", None, [1]):
            with self.subTest(value=value):
                self.assertIsNone(parse_price(value))

    def test_result_is_always_finite_positive(self) -> None:
        """Whatever parses must be a finite number above zero."""
        samples = ["1", "0.01", "9.999,99", "12,5", "R$ 1", "3.000"]
        for raw in samples:
            with self.subTest(raw=raw):
                result = parse_price(raw)
                self.assertIsNotNone(result)
                assert result is not None
                self.assertGreater(result, 0)
                self.assertLess(result, float("inf"))


class TestFindPriceNode(unittest.TestCase):
    """Deep search over page-state payloads."""

    def test_finds_nested_node(self) -> None:
        payload = {"a": [{"b": {"price": 10, "currency_id": "BRL"}}]}
        node = find_price_node(payload)
        self.assertEqual(node, {"price": 10, "currency_id": "BRL"})

    def test_requires_currency_next_to_price(self) -> None:
        """A price without a currency key is not a match."""
        payload = {"price": 10, "child": {"amount": "5,00", "currency": "BRL"}}
        node = find_price_node(payload)
        self.assertEqual(node, {"amount": "5,00", "currency": "BRL"})

    def test_document_order(self) -> None:
        """The first matching node in document order wins."""
        payload = [
            {"price": 1, "currency": "BRL"},
            {"price": 2, "currency": "BRL"},
        ]
        node = find_price_node(payload)
        assert node is not None
        self.assertEqual(node["price"], 1)

    def test_cyclic_payload_terminates(self) -> None:
        """Reference cycles without a price node end with None."""
        a: dict[str, Any] = {"name": "a"}
        b: dict[str, Any] = {"name": "b", "back": a}
        a["next"] = b
        a["items"] = [a, b]
        self.assertIsNone(find_price_node(a))

    def test_cyclic_payload_still_finds_price(self) -> None:
        a: dict[str, Any] = {"name": "a"}
        a["self"] = a
        a["offer"] = {"price": "12,00", "currencyId": "BRL", "owner": a}
        node = find_price_node(a)
        assert node is not None
        self.assertEqual(node["price"], "12,00")

    def test_deep_nesting_no_recursion_error(self) -> None:
        """Depth well past the recursion limit is handled."""
        payload: dict[str, Any] = {"price": 5, "currency": "BRL"}
        for _ in range(5000):
            payload = {"child": payload}
        self.assertIsNotNone(find_price_node(payload))


class TestPriceExtractor(unittest.TestCase):
    """Strategy chain order and evidence kinds."""

    def setUp(self) -> None:
        self.extractor = PriceExtractor()

    def test_meta_price(self) -> None:
        result = self.extractor.extract(_page(head=META_PRICE))
        assert result is not None
        self.assertEqual(result.evidence_kind, EVIDENCE_META)
        self.assertAlmostEqual(result.price, 199.90)
        self.assertEqual(result.currency, "BRL")
        self.assertFalse(result.is_weak)

    def test_meta_wins_over_later_strategies(self) -> None:
        """Meta and JSON-LD disagree: the earlier strategy is used."""
        html = _page(head=META_PRICE + JSON_LD_PRICE + NEXT_DATA_PRICE)
        result = self.extractor.extract(html)
        assert result is not None
        self.assertEqual(result.evidence_kind, EVIDENCE_META)
        self.assertAlmostEqual(result.price, 199.90)

    def test_json_ld_price(self) -> None:
        result = self.extractor.extract(_page(head=JSON_LD_PRICE))
        assert result is not None
        self.assertEqual(result.evidence_kind, EVIDENCE_JSON_LD)
        self.assertAlmostEqual(result.price, 149.50)

    def test_json_ld_graph_with_aggregate_offer(self) -> None:
        doc = {
            "@graph": [
                {"@type": "BreadcrumbList"},
                {
                    "@type": ["Product"],
                    "offers": {"@type": "AggregateOffer", "lowPrice": "99,90"},
                },
            ]
        }
        html = _page(
            head=f'<script type="application/ld+json">{json.dumps(doc)}</script>'
        )
        result = self.extractor.extract(html)
        assert result is not None
        self.assertEqual(result.evidence_kind, EVIDENCE_JSON_LD)
        self.assertAlmostEqual(result.price, 99.90)
        self.assertEqual(result.currency, "BRL")

    def test_preloaded_state_assignment(self) -> None:
        state = {
            "initialState": {
                "components": {
                    "price": {
                        "price": 349.0,
                        "original_price": 399.0,
                        "currency_id": "BRL",
                    }
                }
            }
        }
        html = _page(
            body=(
                "<script>window.__PRELOADED_STATE__ = "
                f"{json.dumps(state)};</script>"
            )
        )
        result = self.extractor.extract(html)
        assert result is not None
        self.assertEqual(result.evidence_kind, EVIDENCE_PRELOADED_STATE)
        self.assertAlmostEqual(result.price, 349.0)
        self.assertAlmostEqual(result.original_price or 0, 399.0)

    def test_next_data(self) -> None:
        result = self.extractor.extract(_page(body=NEXT_DATA_PRICE))
        assert result is not None
        self.assertEqual(result.evidence_kind, EVIDENCE_NEXT_DATA)
        self.assertAlmostEqual(result.price, 88.0)

    def test_regex_is_weak(self) -> None:
        html = _page(body="<p>Por apenas R$&nbsp;1.299,00 à vista</p>")
        result = self.extractor.extract(html)
        assert result is not None
        self.assertEqual(result.evidence_kind, EVIDENCE_REGEX)
        self.assertAlmostEqual(result.price, 1299.0)
        self.assertEqual(result.currency, "BRL")
        self.assertTrue(result.is_weak)

    def test_regex_ignores_script_text(self) -> None:
        html = _page(body="<script>var p = 'R$ 10,00';</script><p>sem preço</p>")
        self.assertIsNone(self.extractor.extract(html))

    def test_invalid_meta_falls_through(self) -> None:
        """A zero meta price is skipped, JSON-LD is used instead."""
        html = _page(
            head='<meta itemprop="price" content="0">' + JSON_LD_PRICE
        )
        result = self.extractor.extract(html)
        assert result is not None
        self.assertEqual(result.evidence_kind, EVIDENCE_JSON_LD)

    def test_no_price(self) -> None:
        self.assertIsNone(self.extractor.extract(_page(body="<p>Olá</p>")))


if __name__ == "__main__":
    unittest.main()
