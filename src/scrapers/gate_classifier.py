# src/scrapers/gate_classifier.py

"""Tells real product pages apart from bot challenges and login walls."""

import logging
import re
from dataclasses import dataclass

from bs4 import BeautifulSoup

from src.config.settings import Settings

logger = logging.getLogger("price_refresh.gate")

VERDICT_PRODUCT = "product"
VERDICT_HARD_GATE = "hard_gate"
VERDICT_NOT_APPLICABLE = "not_applicable"

# Embedded page-data blocks only a rendered listing carries
_PAGE_DATA_MARKERS: tuple[str, ...] = (
    "application/ld+json",
    "__preloaded_state__",
    "__next_data__",
    'itemprop="price"',
)

_TITLE_SEPARATORS_RE = re.compile(r"\s[|\-–]\s")


@dataclass
class GateVerdict:
    """Classification of one fetched page."""

    kind: str
    reason: str = ""

    @property
    def is_hard_gate(self) -> bool:
        """Bot challenge, CAPTCHA, access-denied or login wall."""
        return self.kind == VERDICT_HARD_GATE

    @property
    def is_not_applicable(self) -> bool:
        """Unrelated content: the candidate URL was wrong."""
        return self.kind == VERDICT_NOT_APPLICABLE


class GateClassifier:
    """Layered heuristics over the body and the final URL.

    A page is a hard gate only when it shows a gate signal *and* lacks
    every real-page marker.  Marketing and tracking scripts on genuine
    listings routinely mention ``captcha`` or ``login``; the real-page
    markers keep those from being misread.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or Settings()
        self._auth_url_re = re.compile(
            self.settings.AUTH_URL_PATTERN, re.IGNORECASE
        )
        self._not_applicable_res = [
            re.compile(p, re.IGNORECASE)
            for p in self.settings.NOT_APPLICABLE_URL_PATTERNS
        ]

    # ── Gate signals ─────────────────────────────────────

    def _challenge_marker(self, lower: str) -> str | None:
        for marker in self.settings.CHALLENGE_MARKERS:
            if marker in lower:
                return marker
        return None

    def _login_marker(self, lower: str) -> str | None:
        for marker in self.settings.LOGIN_MARKERS:
            if marker in lower:
                return marker
        for first, second in self.settings.LOGIN_MARKER_PAIRS:
            if first in lower and second in lower:
                return f"{first}+{second}"
        return None

    def _gate_signal(self, lower: str, final_url: str) -> str | None:
        """Return a description of the first gate signal found."""
        marker = self._challenge_marker(lower)
        if marker:
            return f"challenge marker '{marker}'"
        marker = self._login_marker(lower)
        if marker:
            return f"login marker '{marker}'"
        if final_url and self._auth_url_re.search(final_url):
            return f"auth redirect to {final_url}"
        return None

    # ── Real-page markers ────────────────────────────────

    def _has_product_title(self, soup: BeautifulSoup) -> bool:
        """A populated listing heading (``h1.ui-pdp-title`` and kin)."""
        selector = ", ".join(self.settings.PRODUCT_TITLE_SELECTORS)
        for tag in soup.select(selector):
            if tag.get_text(strip=True):
                return True
        return False

    def _has_branded_title(self, soup: BeautifulSoup) -> bool:
        """``<title>`` shaped like ``Item name | Brand``."""
        if soup.title is None:
            return False
        title = soup.title.get_text(strip=True)
        parts = _TITLE_SEPARATORS_RE.split(title)
        if len(parts) < 2 or not parts[0].strip():
            return False
        suffix = parts[-1].strip().lower()
        return any(
            brand == suffix for brand in self.settings.BRAND_NAMES
        )

    def real_page_marker(self, html: str) -> str | None:
        """Return the first genuine-listing marker found, if any."""
        lower = html.lower()
        for marker in _PAGE_DATA_MARKERS:
            if marker in lower:
                return f"page data '{marker}'"
        soup = BeautifulSoup(html, "lxml")
        if self._has_product_title(soup):
            return "product title"
        if self._has_branded_title(soup):
            return "branded title"
        return None

    # ── Public API ───────────────────────────────────────

    def is_not_applicable(self, final_url: str) -> bool:
        """True when *final_url* points at unrelated content."""
        return any(
            rx.search(final_url or "") for rx in self._not_applicable_res
        )

    def classify(self, html: str, final_url: str) -> GateVerdict:
        """Classify a fetched page by its body and final URL."""
        if self.is_not_applicable(final_url):
            return GateVerdict(
                VERDICT_NOT_APPLICABLE,
                f"unrelated page {final_url}",
            )

        signal = self._gate_signal(html.lower(), final_url)
        if signal is None:
            return GateVerdict(VERDICT_PRODUCT)

        real = self.real_page_marker(html)
        if real is not None:
            logger.debug(
                "Ignoring %s on %s: page has %s",
                signal,
                final_url,
                real,
            )
            return GateVerdict(VERDICT_PRODUCT, f"{signal} overridden by {real}")

        return GateVerdict(VERDICT_HARD_GATE, signal)


def classify(
    html: str,
    final_url: str,
    settings: Settings | None = None,
) -> GateVerdict:
    """Module-level shortcut for :meth:`GateClassifier.classify`."""
    return GateClassifier(settings).classify(html, final_url)
