# src/scrapers/candidate_urls.py

"""Candidate product URLs for a marketplace item identifier."""

import re
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from src.config.settings import Settings

# Identifier shapes seen in links and stored ids, most specific first
_ID_EXTRACTORS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(MLBU\d{6,14})", re.IGNORECASE), "{0}"),
    (re.compile(r"(MLB\d{6,14})", re.IGNORECASE), "{0}"),
    (re.compile(r"MLB-(\d{6,14})", re.IGNORECASE), "MLB{0}"),
)

_TRAILING_DIGITS_RE = re.compile(r"(\d+)$")


def strip_tracking_params(
    raw_url: str, tracking_params: frozenset[str],
) -> str:
    """Drop tracking/affiliate query params and the fragment."""
    parsed = urlparse(raw_url)
    params = parse_qs(parsed.query, keep_blank_values=True)
    cleaned = {
        k: v for k, v in params.items()
        if k.lower() not in tracking_params
    }
    new_query = urlencode(cleaned, doseq=True) if cleaned else ""
    return urlunparse((
        parsed.scheme,
        parsed.netloc,
        parsed.path,
        parsed.params,
        new_query,
        "",  # drop fragment
    ))


def normalize_item_id(
    raw: str | None, pattern: str | None = None,
) -> str | None:
    """Canonicalise a stored identifier, or return ``None`` if malformed.

    Accepts the bare id in any case (``mlb123…``), the dashed form used
    in listing URLs (``MLB-123…``) and whole URLs that embed an id.
    """
    if not raw:
        return None
    id_re = re.compile(pattern or Settings.ITEM_ID_PATTERN)
    candidate = raw.strip().upper()
    if id_re.match(candidate):
        return candidate
    for extractor, shape in _ID_EXTRACTORS:
        match = extractor.search(raw)
        if match:
            found = shape.format(match.group(1)).upper()
            if id_re.match(found):
                return found
    return None


def _templates_for(
    item_id: str, templates: dict[str, list[str]],
) -> list[str]:
    """Templates of the longest prefix family matching *item_id*."""
    for prefix in sorted(templates, key=len, reverse=True):
        if item_id.startswith(prefix):
            return templates[prefix]
    return []


def build_candidates(
    item_id: str,
    known_url: str | None = None,
    settings: Settings | None = None,
) -> list[str]:
    """Ordered, de-duplicated URLs to try for one offer.

    Priority: the last known URL verbatim, the same URL without
    tracking parameters, then the marketplace templates for the
    identifier's prefix family.
    """
    cfg = settings or Settings()
    ordered: list[str] = []

    known = (known_url or "").strip()
    if known:
        ordered.append(known)
        ordered.append(
            strip_tracking_params(known, cfg.TRACKING_PARAMS)
        )

    digits_match = _TRAILING_DIGITS_RE.search(item_id)
    digits = digits_match.group(1) if digits_match else item_id
    for template in _templates_for(item_id, cfg.ITEM_URL_TEMPLATES):
        ordered.append(template.format(id=item_id, digits=digits))

    seen: set[str] = set()
    unique: list[str] = []
    for url in ordered:
        if url and url not in seen:
            seen.add(url)
            unique.append(url)
    return unique
