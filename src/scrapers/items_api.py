# src/scrapers/items_api.py

"""Official marketplace items API, used as a fallback price source."""

import json
import logging
from typing import Any
from urllib.parse import quote

from src.config.settings import Settings
from src.models.price_observation import EVIDENCE_API, ExtractedPrice
from src.models.session import BEARER_MODE, SessionCredential
from src.scrapers.errors import FetchError
from src.scrapers.fetcher import Fetcher
from src.scrapers.price_extractor import parse_price


class ItemsApiClient:
    """Reads ``/items/{id}`` with an OAuth bearer token.

    HTML scraping is the primary source.  This client is only consulted
    when a page fetch produced no strong reading and a bearer token is
    configured; it goes through the same rate-limited fetcher, so its
    retries show up on the run counters too.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        token: SessionCredential | None,
        settings: Settings | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.token = token
        self.settings = settings or Settings()
        self.logger = logging.getLogger("price_refresh.items_api")

    @property
    def enabled(self) -> bool:
        """True when the fallback is switched on and a token is present."""
        return (
            self.settings.API_FALLBACK
            and self.token is not None
            and self.token.mode == BEARER_MODE
        )

    def item_url(self, item_id: str) -> str:
        """Endpoint URL for one item."""
        base = self.settings.API_BASE.rstrip("/")
        return f"{base}/items/{quote(item_id)}"

    def fetch_price(self, item_id: str) -> ExtractedPrice | None:
        """Return the API price for *item_id*, or ``None``."""
        if not self.enabled:
            return None
        url = self.item_url(item_id)
        try:
            resp = self.fetcher.fetch(url, self.token)
        except FetchError as exc:
            self.logger.warning("Items API unreachable for %s: %s", item_id, exc)
            return None
        if not resp.ok:
            self.logger.warning(
                "Items API HTTP %d for %s", resp.status_code, item_id,
            )
            return None
        try:
            data: Any = json.loads(resp.text)
        except json.JSONDecodeError:
            self.logger.warning("Items API returned non-JSON for %s", item_id)
            return None
        if not isinstance(data, dict):
            return None

        price = parse_price(data.get("price"))
        if price is None:
            return None
        currency = data.get("currency_id")
        return ExtractedPrice(
            price=price,
            currency=(
                currency if isinstance(currency, str) and currency
                else self.settings.HOME_CURRENCY
            ),
            evidence_kind=EVIDENCE_API,
            original_price=parse_price(data.get("original_price")),
        )
