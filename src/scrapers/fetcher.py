# src/scrapers/fetcher.py

"""Rate-limited, session-authenticated page fetcher."""

import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import cloudscraper  # type: ignore[import-untyped]
from curl_cffi import requests as curl_requests

from src.config.settings import Settings
from src.models.job_run import RunCounters
from src.models.session import SessionCredential
from src.scrapers.errors import FetchError


@dataclass
class FetchResponse:
    """Transport-independent view of one HTTP response."""

    url: str
    final_url: str
    status_code: int
    text: str
    headers: dict[str, str] = field(
        default_factory=lambda: dict[str, str]()
    )

    @property
    def ok(self) -> bool:
        """True for 2xx responses."""
        return 200 <= self.status_code < 300

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None


def parse_retry_after(
    value: str | None, now: datetime | None = None,
) -> float | None:
    """Convert a ``Retry-After`` header to seconds.

    Accepts both delta-seconds and HTTP-date forms.  Returns ``None``
    for missing or unparseable values.
    """
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    current = now or datetime.now(timezone.utc)
    return max(0.0, (when - current).total_seconds())


def _collect_headers(raw: Any) -> dict[str, str]:
    """Copy response headers into a plain ``str -> str`` dict."""
    if not raw:
        return {}
    try:
        items = list(raw.items())
    except (AttributeError, TypeError):
        return {}
    return {
        str(k): str(v)
        for k, v in items
        if isinstance(k, str) and isinstance(v, str)
    }


class Fetcher:
    """GETs marketplace pages with jitter, timeouts and bounded retries.

    Network errors, 429 and 5xx responses are retried with exponential
    backoff; every other status is handed straight back to the caller.
    Retry and rate-limit hits are counted on the shared run counters.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        counters: RunCounters | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.counters = counters or RunCounters()
        self.logger = logging.getLogger("price_refresh.fetcher")
        self.session = curl_requests.Session(
            impersonate=self.settings.IMPERSONATE_BROWSER
        )
        self._cs_scraper: Any = None
        self._request_timeout: int = self.settings.REQUEST_TIMEOUT

    # ── Timing ───────────────────────────────────────────

    def _jitter(self) -> None:
        """Sleep a random pre-request delay to spread concurrent workers."""
        delay_ms = random.randint(
            self.settings.JITTER_MIN_MS,
            self.settings.JITTER_MAX_MS,
        )
        time.sleep(delay_ms / 1000)

    def backoff_delay(self, attempt: int) -> float:
        """Exponential delay for retry *attempt* (0-based), capped."""
        delay = min(
            self.settings.BACKOFF_BASE * (2 ** attempt),
            self.settings.BACKOFF_CAP,
        )
        return delay + random.uniform(0, self.settings.BACKOFF_JITTER)

    def _retry_wait(
        self, resp: FetchResponse, attempt: int,
    ) -> float:
        """Wait before retrying a 429/5xx, honouring Retry-After."""
        hinted = parse_retry_after(resp.header("Retry-After"))
        if hinted is not None:
            return min(hinted, self.settings.BACKOFF_CAP)
        return self.backoff_delay(attempt)

    # ── Transports ───────────────────────────────────────

    def _build_headers(
        self, credential: SessionCredential | None,
    ) -> dict[str, str]:
        """Browser-like headers plus the session credential."""
        headers = dict(self.settings.DEFAULT_HEADERS)
        if credential is not None:
            headers.update(credential.headers())
        return headers

    def _send(
        self, url: str, headers: dict[str, str],
    ) -> FetchResponse:
        """One GET through curl_cffi (browser-impersonating TLS)."""
        resp = self.session.get(
            url,
            headers=headers,
            timeout=self._request_timeout,
            allow_redirects=True,
        )
        final_url = resp.url if isinstance(resp.url, str) else url
        return FetchResponse(
            url=url,
            final_url=final_url,
            status_code=int(resp.status_code),
            text=str(resp.text),
            headers=_collect_headers(resp.headers),
        )

    def _send_cloudscraper(
        self, url: str, headers: dict[str, str],
    ) -> FetchResponse:
        """One GET through cloudscraper (JS challenge solver)."""
        if self._cs_scraper is None:
            _cs: Any = cloudscraper
            self._cs_scraper = _cs.create_scraper()
        resp: Any = self._cs_scraper.get(
            url,
            headers=headers,
            timeout=self._request_timeout,
        )
        final_url = resp.url if isinstance(resp.url, str) else url
        return FetchResponse(
            url=url,
            final_url=final_url,
            status_code=int(resp.status_code),
            text=str(resp.text),
            headers=_collect_headers(resp.headers),
        )

    def _fallback(
        self,
        url: str,
        headers: dict[str, str],
        cause: Exception,
    ) -> FetchResponse:
        """Last attempt through cloudscraper once curl_cffi gave up."""
        if not self.settings.CLOUDSCRAPER_FALLBACK:
            raise FetchError(url, str(cause)) from cause
        self.logger.info(
            "curl_cffi exhausted for %s, falling back to cloudscraper",
            url,
        )
        try:
            return self._send_cloudscraper(url, headers)
        except Exception as exc:
            self.logger.error(
                "cloudscraper fallback also failed for %s: %s",
                url,
                exc,
                exc_info=True,
            )
            raise FetchError(url, str(exc)) from exc

    # ── Public API ───────────────────────────────────────

    def fetch(
        self,
        url: str,
        credential: SessionCredential | None = None,
    ) -> FetchResponse:
        """GET *url*, retrying transient failures.

        Raises:
            FetchError: when network errors persist past the retry budget.
        """
        headers = self._build_headers(credential)
        max_retries = self.settings.MAX_RETRIES
        attempt = 0

        while True:
            self._jitter()
            try:
                resp = self._send(url, headers)
            except Exception as exc:
                self.logger.warning(
                    "Request error for %s on attempt %d: %s",
                    url,
                    attempt + 1,
                    exc,
                )
                if attempt >= max_retries:
                    return self._fallback(url, headers, exc)
                self.counters.incr("retries")
                time.sleep(self.backoff_delay(attempt))
                attempt += 1
                continue

            status = resp.status_code
            if status == 429:
                self.counters.incr("http429")
            if status == 429 or 500 <= status <= 599:
                self.logger.warning(
                    "HTTP %d for %s on attempt %d",
                    status,
                    url,
                    attempt + 1,
                )
                if attempt >= max_retries:
                    return resp
                self.counters.incr("retries")
                time.sleep(self._retry_wait(resp, attempt))
                attempt += 1
                continue

            self.logger.debug(
                "HTTP %d for %s (final %s)",
                status,
                url,
                resp.final_url,
            )
            return resp
