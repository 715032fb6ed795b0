# src/services/offer_pipeline.py

"""Per-offer refresh: candidate URLs, fetch, classify, extract, commit."""

import hashlib
import logging
from dataclasses import dataclass

from bs4 import BeautifulSoup

from src.config.settings import Settings
from src.models.job_run import RunCounters
from src.models.price_observation import (
    EVIDENCE_OVERRIDE,
    ExtractedPrice,
    PriceObservation,
)
from src.models.session import SessionCredential
from src.models.tracked_offer import TrackedOffer
from src.scrapers.candidate_urls import (
    build_candidates,
    normalize_item_id,
    strip_tracking_params,
)
from src.scrapers.errors import FetchError, PersistenceError
from src.scrapers.fetcher import Fetcher, FetchResponse
from src.scrapers.gate_classifier import GateClassifier
from src.scrapers.items_api import ItemsApiClient
from src.scrapers.price_extractor import PriceExtractor
from src.storage.catalog_db import CatalogDB

logger = logging.getLogger("price_refresh.pipeline")

OUTCOME_UPDATED = "updated"
OUTCOME_OVERRIDE = "override"
OUTCOME_PRICE_NOT_FOUND = "price_not_found"
OUTCOME_DEACTIVATED = "deactivated"
OUTCOME_FAILED = "failed"
OUTCOME_SKIPPED = "skipped_invalid_id"


@dataclass
class OfferOutcome:
    """What happened to one offer during the run."""

    offer_id: int
    status: str
    evidence_kind: str | None = None
    price: float | None = None
    error: str | None = None


@dataclass
class _Reading:
    """An extracted price together with the response it came from."""

    extracted: ExtractedPrice
    fetch_url: str
    final_url: str
    body: str


class _CandidateScan:
    """Bookkeeping for one pass over an offer's candidate URLs."""

    def __init__(self, total: int) -> None:
        self.total = total
        self.not_found = 0
        self.transient = 0
        self.strong: _Reading | None = None
        self.weak: _Reading | None = None
        self.last_error: str | None = None

    @property
    def all_not_found(self) -> bool:
        return self.total > 0 and self.not_found == self.total

    @property
    def all_transient(self) -> bool:
        """Every candidate either 404ed or failed on the network or
        with a 429/5xx that outlived the retries, and at least one
        did the latter."""
        return (
            self.transient > 0
            and self.transient + self.not_found == self.total
        )


def _has_override(offer: TrackedOffer) -> bool:
    return offer.price_override is not None and offer.price_override > 0


def _page_title(html: str) -> str:
    soup = BeautifulSoup(html, "lxml")
    if soup.title is None:
        return ""
    return soup.title.get_text(strip=True)


class OfferPipeline:
    """Refreshes the price of one tracked offer.

    Candidate URLs are walked strictly in order.  For each one the
    state moves ``fetching -> classified -> extracted``; a fetch error,
    an error status, a gate or an unrelated page sends the loop on to
    the next candidate.  The first strong reading ends the walk; a weak
    reading is held back in case nothing better turns up.

    Blocking: run it in a worker thread.
    """

    def __init__(
        self,
        db: CatalogDB,
        fetcher: Fetcher,
        credential: SessionCredential | None,
        counters: RunCounters,
        settings: Settings | None = None,
        items_api: ItemsApiClient | None = None,
    ) -> None:
        self.db = db
        self.fetcher = fetcher
        self.credential = credential
        self.counters = counters
        self.settings = settings or Settings()
        self.items_api = items_api
        self.classifier = GateClassifier(self.settings)
        self.extractor = PriceExtractor(self.settings)

    # ── Candidate walk ───────────────────────────────────

    def _try_candidate(
        self, url: str, scan: _CandidateScan, offer: TrackedOffer,
    ) -> None:
        try:
            resp = self.fetcher.fetch(url, self.credential)
        except FetchError as exc:
            scan.transient += 1
            scan.last_error = str(exc)
            logger.warning("offer_id=%d: %s", offer.id, exc)
            return

        if resp.status_code == 404:
            scan.not_found += 1
            logger.info("offer_id=%d: 404 at %s", offer.id, url)
            return
        if resp.status_code in (401, 403):
            self.counters.incr("auth_errors")
            scan.last_error = f"HTTP {resp.status_code} for {url}"
            logger.warning(
                "offer_id=%d: HTTP %d at %s", offer.id, resp.status_code, url,
            )
            # Blocked sessions answer 403 with a challenge page
            verdict = self.classifier.classify(resp.text, resp.final_url)
            if verdict.is_hard_gate:
                self.counters.incr("gate_detected")
                logger.warning(
                    "offer_id=%d: gate behind HTTP %d (%s)",
                    offer.id,
                    resp.status_code,
                    verdict.reason,
                )
            return
        if resp.status_code == 429 or resp.status_code >= 500:
            # The fetcher already spent its retries on this one
            scan.transient += 1
            scan.last_error = (
                f"HTTP {resp.status_code} for {url} after retries"
            )
            logger.warning(
                "offer_id=%d: HTTP %d at %s after retries",
                offer.id,
                resp.status_code,
                url,
            )
            return
        if not resp.ok:
            scan.last_error = f"HTTP {resp.status_code} for {url}"
            logger.warning(
                "offer_id=%d: HTTP %d at %s", offer.id, resp.status_code, url,
            )
            return

        self._inspect_page(resp, scan, offer)

    def _inspect_page(
        self, resp: FetchResponse, scan: _CandidateScan, offer: TrackedOffer,
    ) -> None:
        verdict = self.classifier.classify(resp.text, resp.final_url)
        if verdict.is_not_applicable:
            self.counters.incr("not_applicable")
            logger.info(
                "offer_id=%d: %s", offer.id, verdict.reason,
            )
            return
        if verdict.is_hard_gate:
            self.counters.incr("gate_detected")
            logger.warning(
                "offer_id=%d: gate at %s (%s)",
                offer.id,
                resp.final_url,
                verdict.reason,
            )
            return

        extracted = self.extractor.extract(resp.text)
        if extracted is None:
            logger.info("offer_id=%d: no price at %s", offer.id, resp.url)
            return

        reading = _Reading(extracted, resp.url, resp.final_url, resp.text)
        if extracted.is_weak:
            if scan.weak is None:
                scan.weak = reading
            return
        scan.strong = reading

    def _api_reading(self, item_id: str) -> _Reading | None:
        if self.items_api is None or not self.items_api.enabled:
            return None
        extracted = self.items_api.fetch_price(item_id)
        if extracted is None:
            return None
        self.counters.incr("api_fallbacks")
        url = self.items_api.item_url(item_id)
        return _Reading(extracted, url, url, "")

    # ── Commit ───────────────────────────────────────────

    def _commit(
        self, offer: TrackedOffer, item_id: str, reading: _Reading,
    ) -> OfferOutcome:
        ex = reading.extracted
        obs = PriceObservation(
            offer_id=offer.id,
            external_id=item_id,
            price=ex.price,
            currency=ex.currency,
            evidence_kind=ex.evidence_kind,
            original_price=ex.original_price,
            content_hash=hashlib.sha256(
                reading.body.encode("utf-8")
            ).hexdigest(),
            fetch_url=reading.fetch_url,
            final_url=reading.final_url,
            page_title=_page_title(reading.body) if reading.body else "",
        )
        canonical = (
            strip_tracking_params(
                reading.final_url, self.settings.TRACKING_PARAMS
            )
            if reading.body else None
        )
        try:
            self.db.record_observation(obs, canonical)
        except PersistenceError as exc:
            self.counters.incr("failed")
            logger.error("offer_id=%d: %s", offer.id, exc)
            return OfferOutcome(offer.id, OUTCOME_FAILED, error=str(exc))

        self.counters.incr("updated")
        logger.info(
            "offer_id=%d: %.2f %s via %s",
            offer.id,
            ex.price,
            ex.currency,
            ex.evidence_kind,
        )
        return OfferOutcome(
            offer.id, OUTCOME_UPDATED, ex.evidence_kind, ex.price,
        )

    def _apply_override(self, offer: TrackedOffer) -> OfferOutcome:
        price = offer.price_override or 0.0
        reading = _Reading(
            ExtractedPrice(
                price=price,
                currency=self.settings.HOME_CURRENCY,
                evidence_kind=EVIDENCE_OVERRIDE,
            ),
            fetch_url="",
            final_url="",
            body="",
        )
        self.counters.incr("overrides_applied")
        outcome = self._commit(
            offer, offer.external_id or "", reading,
        )
        if outcome.status == OUTCOME_UPDATED:
            outcome.status = OUTCOME_OVERRIDE
        return outcome

    def _mark(self, offer: TrackedOffer, status: str) -> None:
        try:
            self.db.mark_offer_status(offer.id, status)
        except PersistenceError as exc:
            logger.error("offer_id=%d: %s", offer.id, exc)

    # ── Public API ───────────────────────────────────────

    def item_id_for(self, offer: TrackedOffer) -> str | None:
        return normalize_item_id(
            offer.external_id or offer.url,
            self.settings.ITEM_ID_PATTERN,
        )

    def is_eligible(self, offer: TrackedOffer) -> bool:
        """An offer is refreshable with a manual override or a valid id."""
        return _has_override(offer) or self.item_id_for(offer) is not None

    def skip_invalid(self, offer: TrackedOffer) -> OfferOutcome:
        self.counters.incr("skipped_invalid_id")
        logger.info(
            "offer_id=%d: invalid identifier %r",
            offer.id,
            offer.external_id,
        )
        self._mark(offer, OUTCOME_SKIPPED)
        return OfferOutcome(offer.id, OUTCOME_SKIPPED)

    def process(self, offer: TrackedOffer) -> OfferOutcome:
        """Refresh one offer and record the outcome on the counters."""
        if _has_override(offer):
            return self._apply_override(offer)

        item_id = self.item_id_for(offer)
        if item_id is None:
            return self.skip_invalid(offer)

        candidates = build_candidates(item_id, offer.url, self.settings)
        scan = _CandidateScan(len(candidates))
        for url in candidates:
            self._try_candidate(url, scan, offer)
            if scan.strong is not None:
                break

        if scan.strong is not None:
            return self._commit(offer, item_id, scan.strong)

        api_reading = self._api_reading(item_id)
        if api_reading is not None:
            return self._commit(offer, item_id, api_reading)

        if scan.weak is not None:
            self.counters.incr("weak_accepted")
            return self._commit(offer, item_id, scan.weak)

        if scan.all_not_found:
            try:
                self.db.deactivate_offer(offer.id)
            except PersistenceError as exc:
                self.counters.incr("failed")
                logger.error("offer_id=%d: %s", offer.id, exc)
                return OfferOutcome(offer.id, OUTCOME_FAILED, error=str(exc))
            self.counters.incr("deactivated")
            logger.info("offer_id=%d: every candidate 404, deactivated", offer.id)
            return OfferOutcome(offer.id, OUTCOME_DEACTIVATED)

        if scan.all_transient:
            self.counters.incr("failed")
            self._mark(offer, OUTCOME_FAILED)
            return OfferOutcome(
                offer.id, OUTCOME_FAILED, error=scan.last_error,
            )

        self.counters.incr("price_not_found")
        self._mark(offer, OUTCOME_PRICE_NOT_FOUND)
        return OfferOutcome(
            offer.id, OUTCOME_PRICE_NOT_FOUND, error=scan.last_error,
        )
