# src/config/settings.py

"""Central configuration for the price refresh engine."""

import os
from pathlib import Path

from curl_cffi.requests import BrowserTypeLiteral
from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    """Read an integer from the environment, falling back to *default*."""
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    """Read a float from the environment, falling back to *default*."""
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default


def _env_bool(name: str, default: bool) -> bool:
    """Read a yes/no flag from the environment."""
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


class Settings:
    """Central configuration for the price refresh engine."""

    # --- Catalog ---
    PLATFORM_LABEL: str = os.getenv(
        "PRICE_REFRESH_PLATFORM", "mercadolivre"
    )
    BATCH_SIZE: int = _env_int("PRICE_REFRESH_BATCH_SIZE", 150)
    CONCURRENCY: int = _env_int("PRICE_REFRESH_CONCURRENCY", 2)
    HOME_CURRENCY: str = "BRL"
    ITEM_ID_PATTERN: str = r"^(MLBU|MLB)\d{6,14}$"

    # --- Fetching ---
    REQUEST_TIMEOUT: int = _env_int("PRICE_REFRESH_TIMEOUT", 25)
    MAX_RETRIES: int = _env_int("PRICE_REFRESH_MAX_RETRIES", 2)
    JITTER_MIN_MS: int = 120            # Pre-request delay window
    JITTER_MAX_MS: int = 420
    BACKOFF_BASE: float = 0.7           # Seconds, doubled per attempt
    BACKOFF_CAP: float = 12.0
    BACKOFF_JITTER: float = 0.25        # Extra random seconds per wait
    CLOUDSCRAPER_FALLBACK: bool = _env_bool(
        "PRICE_REFRESH_CLOUDSCRAPER_FALLBACK", True
    )

    # --- Session ---
    CREDENTIAL_MODE: str = os.getenv(
        "PRICE_REFRESH_CREDENTIAL_MODE", "cookie"
    )
    SESSION_CHECK_URL: str = os.getenv(
        "PRICE_REFRESH_SESSION_CHECK_URL",
        "https://www.mercadolivre.com.br/",
    )

    # --- Resilience ---
    GATE_THRESHOLD: int = _env_int("PRICE_REFRESH_GATE_THRESHOLD", 8)
    AUTH_ERROR_THRESHOLD: int = _env_int(
        "PRICE_REFRESH_AUTH_ERROR_THRESHOLD", 8
    )
    ERROR_SAMPLE_LIMIT: int = 500       # Chars kept in the run record

    # --- Official items API (fallback source) ---
    API_BASE: str = os.getenv(
        "PRICE_REFRESH_API_BASE", "https://api.mercadolibre.com"
    )
    API_FALLBACK: bool = _env_bool("PRICE_REFRESH_API_FALLBACK", True)

    # --- Gate detection ---
    CHALLENGE_MARKERS: list[str] = [
        "captcha",
        "hcaptcha",
        "g-recaptcha",
        "datadome",
        "access denied",
        "não sou um robô",
        "challenges.cloudflare.com",
        "cf-turnstile",
        "just a moment",
        "unusual traffic",
    ]
    LOGIN_MARKERS: list[str] = [
        "iniciar sessão",
        "inicie sessão",
        "entrar na sua conta",
    ]
    # Both words must appear together
    LOGIN_MARKER_PAIRS: list[tuple[str, str]] = [
        ("identificação", "e-mail"),
    ]
    AUTH_URL_PATTERN: str = (
        r"/(authorization|auth|login|ingreso|entrar)(?:[/?#.]|$)"
    )
    NOT_APPLICABLE_URL_PATTERNS: list[str] = [
        r"/social/",
        r"forceInApp=true",
        r"^https?://(?:www\.|l\.)?(?:instagram|facebook|tiktok)\.com",
    ]
    BRAND_NAMES: list[str] = ["mercado livre", "mercadolivre"]
    PRODUCT_TITLE_SELECTORS: list[str] = [
        "h1.ui-pdp-title",
        "h1[itemprop='name']",
        "[itemtype*='schema.org/Product'] [itemprop='name']",
    ]

    # --- Candidate URLs (longest prefix wins) ---
    ITEM_URL_TEMPLATES: dict[str, list[str]] = {
        "MLBU": [
            "https://www.mercadolivre.com.br/up/{id}",
        ],
        "MLB": [
            "https://produto.mercadolivre.com.br/MLB-{digits}",
            "https://www.mercadolivre.com.br/p/{id}",
        ],
    }
    TRACKING_PARAMS: frozenset[str] = frozenset({
        "matt_tool", "matt_word", "matt_source", "matt_campaign",
        "matt_ad_group", "matt_match_type", "matt_network",
        "matt_device", "matt_creative", "matt_keyword",
        "matt_ad_position", "matt_ad_type", "matt_merchant_id",
        "matt_product_id", "matt_product_partition_id",
        "matt_target_id", "tracking_id", "reco_id", "reco_backend",
        "reco_client", "reco_item_pos", "reco_backend_type",
        "c_id", "c_uid", "c_element_order", "c_campaign",
        "c_label", "c_tracking_id", "searchvariation", "position",
        "search_layout", "type", "forcein", "utm_source",
        "utm_medium", "utm_campaign", "utm_content", "utm_term",
        "gclid", "fbclid", "ref",
    })

    # --- Browser Impersonation ---
    IMPERSONATE_BROWSER: BrowserTypeLiteral = "chrome131"
    DEFAULT_HEADERS: dict[str, str] = {
        "Accept": (
            "text/html,application/xhtml+xml,"
            "application/xml;q=0.9,image/avif,"
            "image/webp,image/apng,*/*;q=0.8"
        ),
        "Accept-Language": "pt-BR,pt;q=0.9,en-US;q=0.8,en;q=0.7",
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
        "Referer": "https://www.mercadolivre.com.br/",
        "sec-ch-ua": (
            '"Google Chrome";v="131", '
            '"Chromium";v="131", '
            '"Not_A Brand";v="24"'
        ),
        "sec-ch-ua-mobile": "?0",
        "sec-ch-ua-platform": '"Windows"',
        "sec-fetch-dest": "document",
        "sec-fetch-mode": "navigate",
        "sec-fetch-site": "same-origin",
        "sec-fetch-user": "?1",
        "Upgrade-Insecure-Requests": "1",
    }

    # --- Paths ---
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    DB_PATH: Path = Path(
        os.getenv(
            "PRICE_REFRESH_DB_PATH",
            str(BASE_DIR / "data" / "catalog.db"),
        )
    )
    RESULTS_DIR: Path = BASE_DIR / "results"
    LOGS_DIR: Path = BASE_DIR / "logs"
