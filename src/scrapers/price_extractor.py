# src/scrapers/price_extractor.py

"""Multi-strategy price extraction from confirmed product pages.

Strategies run strictly in order of decreasing reliability and the
first one that yields a finite, positive price wins:

1. ``meta``: ``<meta itemprop="price">`` / ``product:price:amount``.
2. ``json_ld``: a schema.org ``Product`` node with ``offers.price``.
3. ``preloaded_state``: the ``__PRELOADED_STATE__`` page-state payload.
4. ``next_data``: the ``__NEXT_DATA__`` page-state payload.
5. ``regex``: a currency-prefixed number in the visible text.  This
   reading is *weak*: callers keep looking at other candidate URLs and
   only fall back to it when nothing stronger turns up.

Page-state payloads are arbitrary nested JSON, so they are walked with
an explicit stack and an identity-keyed visited set rather than
recursion.
"""

import json
import logging
import math
import re
from collections.abc import Callable
from typing import Any, cast

from bs4 import BeautifulSoup, Tag

from src.config.settings import Settings
from src.models.price_observation import (
    EVIDENCE_JSON_LD,
    EVIDENCE_META,
    EVIDENCE_NEXT_DATA,
    EVIDENCE_PRELOADED_STATE,
    EVIDENCE_REGEX,
    ExtractedPrice,
)

logger = logging.getLogger("price_refresh.extractor")

PRICE_KEYS: tuple[str, ...] = (
    "price",
    "amount",
    "current_price",
    "currentPrice",
    "sale_price",
    "salePrice",
)
CURRENCY_KEYS: tuple[str, ...] = (
    "currency_id",
    "currencyId",
    "currency",
    "priceCurrency",
    "currency_code",
)
ORIGINAL_PRICE_KEYS: tuple[str, ...] = (
    "original_price",
    "originalPrice",
    "regular_amount",
    "previous_price",
    "list_price",
)

_CURRENCY_SYMBOLS: dict[str, str] = {
    "R$": "BRL",
    "US$": "USD",
    "€": "EUR",
    "£": "GBP",
}

_CURRENCY_PRICE_RE = re.compile(
    r"(R\$|US\$|€|£)\s?(\d[\d.,]*\d|\d)"
)
_NON_NUMERIC_RE = re.compile(r"[^\d,.\-]")
_STATE_ASSIGN_RE = re.compile(
    r"__PRELOADED_STATE__\s*=\s*"
)
_CURRENCY_CODE_RE = re.compile(r"^[A-Za-z]{3}$")


def parse_price(value: object) -> float | None:
    """Parse a loose price value into a positive float.

    Strings may use either ``,`` or ``.`` as the decimal point.  When
    both appear, the one that occurs last is the decimal point and the
    other is a thousands separator.  A single separator is always the
    decimal point; the same separator repeated is a thousands
    separator.  Returns ``None`` unless the result is finite and > 0.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        cleaned = _NON_NUMERIC_RE.sub("", value)
        if not any(ch.isdigit() for ch in cleaned):
            return None
        last_comma = cleaned.rfind(",")
        last_dot = cleaned.rfind(".")
        if last_comma >= 0 and last_dot >= 0:
            decimal = "," if last_comma > last_dot else "."
            thousands = "." if decimal == "," else ","
            cleaned = cleaned.replace(thousands, "").replace(decimal, ".")
        elif last_comma >= 0 or last_dot >= 0:
            sep = "," if last_comma >= 0 else "."
            if cleaned.count(sep) == 1:
                cleaned = cleaned.replace(sep, ".")
            else:
                cleaned = cleaned.replace(sep, "")
        try:
            number = float(cleaned)
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def _first_value(node: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in node and node[key] is not None:
            return node[key]
    return None


def find_price_node(payload: Any) -> dict[str, Any] | None:
    """Depth-first search for the first object with price + currency.

    Walks dicts and lists with an explicit stack in document order.
    Objects already visited (by identity) are skipped, so payloads that
    contain reference cycles terminate.
    """
    stack: list[Any] = [payload]
    visited: set[int] = set()

    while stack:
        node = stack.pop()
        if not isinstance(node, (dict, list)):
            continue
        if id(node) in visited:
            continue
        visited.add(id(node))

        if isinstance(node, dict):
            obj = cast(dict[str, Any], node)
            price = _first_value(obj, PRICE_KEYS)
            currency = _first_value(obj, CURRENCY_KEYS)
            if (
                parse_price(price) is not None
                and isinstance(currency, str)
                and currency.strip()
            ):
                return obj
            children: list[Any] = list(obj.values())
        else:
            children = list(cast(list[Any], node))

        # Reversed so the first child is popped first
        for child in reversed(children):
            if isinstance(child, (dict, list)):
                stack.append(child)
    return None


class PriceExtractor:
    """Runs the extraction chain over one HTML document."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or Settings()

    # ── Helpers ──────────────────────────────────────────

    def _currency(self, raw: object) -> str:
        """Normalise a currency code, defaulting to the home currency."""
        if isinstance(raw, str) and _CURRENCY_CODE_RE.match(raw.strip()):
            return raw.strip().upper()
        return self.settings.HOME_CURRENCY

    @staticmethod
    def _meta_content(soup: BeautifulSoup, *attrs: tuple[str, str]) -> str | None:
        for attr, value in attrs:
            tag = soup.find("meta", attrs={attr: value})
            if isinstance(tag, Tag):
                content = tag.get("content")
                if isinstance(content, str) and content.strip():
                    return content
        return None

    @staticmethod
    def _script_json(soup: BeautifulSoup, script_id: str) -> Any:
        """Parse the JSON body of ``<script id=script_id>``."""
        script = soup.find("script", id=script_id)
        if not isinstance(script, Tag) or not script.string:
            return None
        try:
            return json.loads(script.string)
        except (json.JSONDecodeError, TypeError):
            logger.debug("Unparseable JSON in script#%s", script_id)
            return None

    # ── Strategies ───────────────────────────────────────

    def _from_meta(self, soup: BeautifulSoup) -> ExtractedPrice | None:
        raw = self._meta_content(
            soup,
            ("itemprop", "price"),
            ("property", "product:price:amount"),
        )
        price = parse_price(raw)
        if price is None:
            return None
        currency = self._meta_content(
            soup,
            ("itemprop", "priceCurrency"),
            ("property", "product:price:currency"),
        )
        return ExtractedPrice(
            price=price,
            currency=self._currency(currency),
            evidence_kind=EVIDENCE_META,
        )

    def _offer_price(
        self, offers: Any,
    ) -> tuple[float, str | None] | None:
        """Price and currency from an ``offers`` value (dict or list)."""
        queue: list[Any] = [offers]
        while queue:
            offer = queue.pop(0)
            if isinstance(offer, list):
                queue.extend(cast(list[Any], offer))
                continue
            if not isinstance(offer, dict):
                continue
            node = cast(dict[str, Any], offer)
            price = parse_price(node.get("price"))
            if price is None:
                price = parse_price(node.get("lowPrice"))
            if price is not None:
                currency = node.get("priceCurrency")
                return price, currency if isinstance(currency, str) else None
            if "offers" in node:
                queue.append(node["offers"])
        return None

    @staticmethod
    def _ld_nodes(data: Any) -> list[dict[str, Any]]:
        """Flatten JSON-LD documents, lists and ``@graph`` containers."""
        nodes: list[dict[str, Any]] = []
        queue: list[Any] = [data]
        while queue:
            item = queue.pop(0)
            if isinstance(item, list):
                queue.extend(cast(list[Any], item))
            elif isinstance(item, dict):
                node = cast(dict[str, Any], item)
                nodes.append(node)
                if "@graph" in node:
                    queue.append(node["@graph"])
        return nodes

    def _from_json_ld(self, soup: BeautifulSoup) -> ExtractedPrice | None:
        for script in soup.find_all("script", type="application/ld+json"):
            if not isinstance(script, Tag) or not script.string:
                continue
            try:
                data: Any = json.loads(script.string)
            except (json.JSONDecodeError, TypeError):
                continue
            for node in self._ld_nodes(data):
                node_type = node.get("@type")
                types = node_type if isinstance(node_type, list) else [node_type]
                if "Product" not in types:
                    continue
                found = self._offer_price(node.get("offers"))
                if found is None:
                    continue
                price, currency = found
                return ExtractedPrice(
                    price=price,
                    currency=self._currency(currency),
                    evidence_kind=EVIDENCE_JSON_LD,
                )
        return None

    def _from_state(
        self, payload: Any, evidence_kind: str,
    ) -> ExtractedPrice | None:
        if payload is None:
            return None
        node = find_price_node(payload)
        if node is None:
            return None
        price = parse_price(_first_value(node, PRICE_KEYS))
        if price is None:
            return None
        return ExtractedPrice(
            price=price,
            currency=self._currency(_first_value(node, CURRENCY_KEYS)),
            evidence_kind=evidence_kind,
            original_price=parse_price(
                _first_value(node, ORIGINAL_PRICE_KEYS)
            ),
        )

    def _preloaded_state(self, soup: BeautifulSoup) -> Any:
        """Load ``__PRELOADED_STATE__`` from a JSON tag or a JS assignment."""
        data = self._script_json(soup, "__PRELOADED_STATE__")
        if data is not None:
            return data
        decoder = json.JSONDecoder()
        for script in soup.find_all("script"):
            text = script.string if isinstance(script, Tag) else None
            if not text or "__PRELOADED_STATE__" not in text:
                continue
            match = _STATE_ASSIGN_RE.search(text)
            if match is None:
                continue
            try:
                data, _end = decoder.raw_decode(text, match.end())
            except json.JSONDecodeError:
                logger.debug("Unparseable __PRELOADED_STATE__ assignment")
                continue
            return data
        return None

    def _from_preloaded_state(
        self, soup: BeautifulSoup,
    ) -> ExtractedPrice | None:
        return self._from_state(
            self._preloaded_state(soup), EVIDENCE_PRELOADED_STATE
        )

    def _from_next_data(self, soup: BeautifulSoup) -> ExtractedPrice | None:
        return self._from_state(
            self._script_json(soup, "__NEXT_DATA__"), EVIDENCE_NEXT_DATA
        )

    def _from_regex(self, soup: BeautifulSoup) -> ExtractedPrice | None:
        for tag in soup(["script", "style", "noscript"]):
            tag.decompose()
        text = soup.get_text(" ").replace("\xa0", " ")
        for match in _CURRENCY_PRICE_RE.finditer(text):
            price = parse_price(match.group(2))
            if price is None:
                continue
            return ExtractedPrice(
                price=price,
                currency=_CURRENCY_SYMBOLS.get(
                    match.group(1), self.settings.HOME_CURRENCY
                ),
                evidence_kind=EVIDENCE_REGEX,
            )
        return None

    # ── Public API ───────────────────────────────────────

    def extract(self, html: str) -> ExtractedPrice | None:
        """Run the strategy chain; ``None`` means price not found."""
        soup = BeautifulSoup(html, "lxml")
        strategies: list[
            Callable[[BeautifulSoup], ExtractedPrice | None]
        ] = [
            self._from_meta,
            self._from_json_ld,
            self._from_preloaded_state,
            self._from_next_data,
            self._from_regex,
        ]
        for strategy in strategies:
            result = strategy(soup)
            if result is not None:
                logger.debug(
                    "Price %.2f %s via %s",
                    result.price,
                    result.currency,
                    result.evidence_kind,
                )
                return result
        return None
