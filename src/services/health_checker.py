# src/services/health_checker.py

"""Session health probe: is the credential still good for scraping?"""

import logging
import time
from dataclasses import dataclass

from src.config.settings import Settings
from src.models.session import SessionCredential
from src.scrapers.candidate_urls import build_candidates, normalize_item_id
from src.scrapers.errors import FetchError
from src.scrapers.fetcher import Fetcher, FetchResponse
from src.scrapers.gate_classifier import GateClassifier
from src.scrapers.price_extractor import PriceExtractor
from src.storage.catalog_db import CatalogDB

logger = logging.getLogger("price_refresh.health")

HEALTH_OK = "healthy"
HEALTH_COOKIE_MISSING = "cookie_missing"
HEALTH_NO_ACTIVE_OFFER = "no_active_offer"
HEALTH_OFFER_MISSING_URL = "offer_missing_url"
HEALTH_HTTP_ERROR = "http_error"
HEALTH_BOT_OR_LOGIN = "bot_or_login"
HEALTH_PRICE_NOT_FOUND = "price_not_found"
HEALTH_UNREACHABLE = "unreachable"


@dataclass
class HealthResult:
    """Result of one session health probe."""

    status: str
    latency_ms: float
    message: str = ""
    url: str = ""
    http_status: int | None = None
    price: float | None = None

    @property
    def ok(self) -> bool:
        return self.status == HEALTH_OK


class HealthChecker:
    """Probes the session check URL and one active offer's page.

    Nothing is written to the catalog; this only answers whether a
    refresh run would currently get through.
    """

    def __init__(
        self,
        db: CatalogDB,
        credential: SessionCredential | None,
        settings: Settings | None = None,
        fetcher: Fetcher | None = None,
    ) -> None:
        self.db = db
        self.credential = credential
        self.settings = settings or Settings()
        self.fetcher = fetcher or Fetcher(self.settings)
        self.classifier = GateClassifier(self.settings)
        self.extractor = PriceExtractor(self.settings)

    def _probe_page(
        self, url: str, start: float,
    ) -> tuple[HealthResult | None, FetchResponse | None]:
        """Fetch *url*; return a failing result, or the passing response."""
        try:
            resp = self.fetcher.fetch(url, self.credential)
        except FetchError as exc:
            return HealthResult(
                HEALTH_UNREACHABLE,
                (time.monotonic() - start) * 1000,
                str(exc)[:80],
                url,
            ), None
        if not resp.ok:
            return HealthResult(
                HEALTH_HTTP_ERROR,
                (time.monotonic() - start) * 1000,
                f"HTTP {resp.status_code}",
                url,
                resp.status_code,
            ), None
        verdict = self.classifier.classify(resp.text, resp.final_url)
        if verdict.is_hard_gate:
            return HealthResult(
                HEALTH_BOT_OR_LOGIN,
                (time.monotonic() - start) * 1000,
                verdict.reason,
                resp.final_url,
                resp.status_code,
            ), None
        return None, resp

    def check(self) -> HealthResult:
        """Run the probe and log the outcome."""
        result = self._check()
        logger.info(
            "Health check: %s (%.0fms) %s",
            result.status,
            result.latency_ms,
            result.message,
        )
        return result

    def _check(self) -> HealthResult:
        start = time.monotonic()
        if self.credential is None or not self.credential.value:
            return HealthResult(
                HEALTH_COOKIE_MISSING, 0.0, "No session credential configured",
            )

        failed, _resp = self._probe_page(
            self.settings.SESSION_CHECK_URL, start,
        )
        if failed is not None:
            return failed

        offer = self.db.first_active_offer(self.settings.PLATFORM_LABEL)
        if offer is None:
            return HealthResult(
                HEALTH_NO_ACTIVE_OFFER,
                (time.monotonic() - start) * 1000,
                "Session accepted; no active offer to probe",
            )

        item_id = normalize_item_id(
            offer.external_id or offer.url, self.settings.ITEM_ID_PATTERN,
        )
        candidates = (
            build_candidates(item_id, offer.url, self.settings)
            if item_id else []
        )
        if not candidates:
            return HealthResult(
                HEALTH_OFFER_MISSING_URL,
                (time.monotonic() - start) * 1000,
                f"offer_id={offer.id} has no usable URL",
            )

        url = candidates[0]
        failed, resp = self._probe_page(url, start)
        if failed is not None or resp is None:
            return failed or HealthResult(HEALTH_UNREACHABLE, 0.0)

        extracted = self.extractor.extract(resp.text)
        elapsed_ms = (time.monotonic() - start) * 1000
        if extracted is None:
            return HealthResult(
                HEALTH_PRICE_NOT_FOUND, elapsed_ms, "", url, resp.status_code,
            )
        return HealthResult(
            HEALTH_OK,
            elapsed_ms,
            f"{extracted.price:.2f} {extracted.currency} via "
            f"{extracted.evidence_kind}",
            url,
            resp.status_code,
            extracted.price,
        )
