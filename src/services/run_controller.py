# src/services/run_controller.py

"""Runs one full price-refresh batch over the tracked offers."""

import asyncio
import logging
import threading
import time
from datetime import datetime, timezone

from src.config.settings import Settings
from src.models.job_run import (
    STATUS_FAILED,
    STATUS_PARTIAL,
    STATUS_SESSION_INVALID,
    STATUS_SUCCESS,
    JobRun,
    RunCounters,
    RunSummary,
)
from src.models.session import SessionCredential
from src.models.tracked_offer import TrackedOffer
from src.scrapers.errors import FetchError, SessionError
from src.scrapers.fetcher import Fetcher
from src.scrapers.gate_classifier import GateClassifier
from src.scrapers.items_api import ItemsApiClient
from src.services.offer_pipeline import (
    OUTCOME_UPDATED,
    OfferOutcome,
    OfferPipeline,
)
from src.services.worker_pool import run_pool
from src.storage.catalog_db import CatalogDB

logger = logging.getLogger("price_refresh.run")

STATE_CREATED = "created"
STATE_VALIDATING = "validating_session"
STATE_SCANNING = "scanning"
STATE_FINALIZED = "finalized"


class RunController:
    """Drives one batch: validate the session, page offers, finalize.

    The run moves ``created -> validating_session -> scanning ->
    finalized``.  An unusable session skips straight to ``finalized``
    with status ``session_invalid`` and no offer is touched.
    """

    def __init__(
        self,
        db: CatalogDB,
        credential: SessionCredential | None,
        settings: Settings | None = None,
        fetcher: Fetcher | None = None,
        api_token: SessionCredential | None = None,
    ) -> None:
        self.db = db
        self.credential = credential
        self.settings = settings or Settings()
        self.counters = RunCounters()
        self.fetcher = fetcher or Fetcher(self.settings, self.counters)
        self.fetcher.counters = self.counters
        self.items_api = ItemsApiClient(self.fetcher, api_token, self.settings)
        self.pipeline = OfferPipeline(
            db=self.db,
            fetcher=self.fetcher,
            credential=self.credential,
            counters=self.counters,
            settings=self.settings,
            items_api=self.items_api,
        )
        self.state = STATE_CREATED
        self.stopped_early = False
        self._error_sample: str | None = None
        self._error_lock = threading.Lock()

    # ── Session ──────────────────────────────────────────

    def validate_session(self) -> None:
        """Probe the session check URL once.

        Raises:
            SessionError: when the credential is missing, the probe
                fails on the network, answers non-2xx, or lands on a gate.
        """
        if self.credential is None or not self.credential.value:
            raise SessionError("No session credential configured")

        url = self.settings.SESSION_CHECK_URL
        try:
            resp = self.fetcher.fetch(url, self.credential)
        except FetchError as exc:
            raise SessionError(f"Session check unreachable: {exc}") from exc
        if not resp.ok:
            raise SessionError(
                f"Session check returned HTTP {resp.status_code}"
            )
        verdict = GateClassifier(self.settings).classify(
            resp.text, resp.final_url
        )
        if verdict.is_hard_gate:
            raise SessionError(f"Session check hit a gate: {verdict.reason}")
        logger.info(
            "Session valid (%s via %s)",
            self.credential.mode,
            self.credential.source or "unknown source",
        )

    # ── Breaker & errors ─────────────────────────────────

    def breaker_tripped(self) -> bool:
        """True once gate detections or auth rejections exceed their
        thresholds."""
        gates = self.counters.get("gate_detected")
        auth = self.counters.get("auth_errors")
        tripped = (
            gates > self.settings.GATE_THRESHOLD
            or auth > self.settings.AUTH_ERROR_THRESHOLD
        )
        if tripped and not self.stopped_early:
            self.stopped_early = True
            logger.warning(
                "Circuit breaker tripped (%d gate detections, %d auth "
                "errors), no further offers will be dispatched",
                gates,
                auth,
            )
        return tripped

    def _note_error(self, message: str) -> None:
        with self._error_lock:
            if self._error_sample is None:
                self._error_sample = message[: self.settings.ERROR_SAMPLE_LIMIT]

    # ── Scanning ─────────────────────────────────────────

    async def _process_offer(self, offer: TrackedOffer) -> None:
        self.counters.incr("dispatched")
        outcome: OfferOutcome = await asyncio.to_thread(
            self.pipeline.process, offer
        )
        if outcome.error and outcome.status != OUTCOME_UPDATED:
            self._note_error(f"offer_id={offer.id}: {outcome.error}")

    async def _scan(self) -> None:
        last_id = 0
        while True:
            page = await asyncio.to_thread(
                self.db.fetch_offer_page,
                self.settings.PLATFORM_LABEL,
                last_id,
                self.settings.BATCH_SIZE,
            )
            if not page:
                break
            if self.breaker_tripped():
                break
            last_id = page[-1].id
            self.counters.incr("scanned", len(page))
            logger.info(
                "Batch of %d offers (through id %d)", len(page), last_id,
            )

            eligible: list[TrackedOffer] = []
            for offer in page:
                if self.pipeline.is_eligible(offer):
                    eligible.append(offer)
                else:
                    await asyncio.to_thread(self.pipeline.skip_invalid, offer)

            result = await run_pool(
                eligible,
                self.settings.CONCURRENCY,
                self._process_offer,
                should_stop=self.breaker_tripped,
            )
            for offer, exc in result.errors:
                self.counters.incr("failed")
                self._note_error(f"offer_id={offer.id}: {exc}")

            if len(page) < self.settings.BATCH_SIZE:
                break

    # ── Run ──────────────────────────────────────────────

    def _summary(self, run: JobRun, started: float) -> RunSummary:
        duration_ms = int((time.monotonic() - started) * 1000)
        counters = self.counters.snapshot()
        run.finished_at = datetime.now(timezone.utc)
        run.error_sample = self._error_sample
        run.stopped_early = self.stopped_early
        run.stats = {**counters, "duration_ms": duration_ms}
        return RunSummary(
            status=run.status,
            counters=counters,
            duration_ms=duration_ms,
            error_sample=self._error_sample,
            stopped_early=self.stopped_early,
            run_id=run.id,
            platform=run.platform,
        )

    async def run(self) -> RunSummary:
        """Execute the batch and return its summary.

        Per-offer problems never escape; a crash of the run itself is
        recorded as ``failed`` and re-raised.
        """
        started = time.monotonic()
        run = JobRun(
            platform=self.settings.PLATFORM_LABEL,
            started_at=datetime.now(timezone.utc),
        )
        self.db.create_job_run(run)
        logger.info("Job run %s started for %s", run.id, run.platform)

        try:
            self.state = STATE_VALIDATING
            try:
                await asyncio.to_thread(self.validate_session)
            except SessionError as exc:
                logger.error("Session invalid: %s", exc)
                self._note_error(str(exc))
                run.status = STATUS_SESSION_INVALID
                return self._finalize(run, started)

            self.state = STATE_SCANNING
            await self._scan()
            run.status = (
                STATUS_PARTIAL if self.counters.had_incidents()
                else STATUS_SUCCESS
            )
            return self._finalize(run, started)
        except Exception as exc:
            logger.error("Job run %s crashed: %s", run.id, exc, exc_info=True)
            self._note_error(str(exc))
            run.status = STATUS_FAILED
            self._finalize(run, started)
            raise

    def _finalize(self, run: JobRun, started: float) -> RunSummary:
        summary = self._summary(run, started)
        self.db.finish_job_run(run)
        self.state = STATE_FINALIZED
        logger.info(
            "Job run %s finished: %s (%d updated of %d scanned)",
            run.id,
            run.status,
            summary.counters["updated"],
            summary.counters["scanned"],
        )
        return summary
