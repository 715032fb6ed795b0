# src/storage/session_store.py

"""Loads the externally supplied marketplace session credential."""

import base64
import binascii
import logging
import os
import re
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from src.config.settings import Settings
from src.models.session import BEARER_MODE, COOKIE_MODE, SessionCredential
from src.scrapers.errors import SessionError

logger = logging.getLogger("price_refresh.session")

ENV_COOKIE = "PRICE_REFRESH_SESSION_COOKIE"
ENV_COOKIE_FILE = "PRICE_REFRESH_SESSION_FILE"
ENV_COOKIE_ENCRYPTED = "PRICE_REFRESH_SESSION_ENCRYPTED"
ENV_COOKIE_KEY = "PRICE_REFRESH_COOKIE_KEY"
ENV_API_TOKEN = "PRICE_REFRESH_API_TOKEN"

_IV_BYTES = 12
_TAG_BYTES = 16

_COOKIE_PREFIX_RE = re.compile(r"^cookie\s*:\s*", re.IGNORECASE)
_NEWLINES_RE = re.compile(r"[\r\n]+")
_SPACES_RE = re.compile(r"\s{2,}")


def normalize_cookie_header(raw: str | None) -> str:
    """Clean up a pasted cookie into a single ``Cookie`` header value.

    Strips surrounding quotes and a leading ``Cookie:`` label, and
    collapses line breaks and runs of whitespace into single spaces.
    """
    s = (raw or "").strip()
    if len(s) >= 2 and s[0] == s[-1] and s[0] in ("'", '"'):
        s = s[1:-1].strip()
    s = _COOKIE_PREFIX_RE.sub("", s)
    s = _NEWLINES_RE.sub(" ", s).strip()
    return _SPACES_RE.sub(" ", s)


def decrypt_cookie(blob_b64: str, key_b64: str) -> str:
    """Decrypt an AES-256-GCM cookie blob.

    The blob is base64 of ``iv(12) | tag(16) | ciphertext`` and the key
    is base64 of 32 raw bytes.

    Raises:
        SessionError: for a bad key, a truncated blob or a failed tag check.
    """
    try:
        key = base64.b64decode(key_b64, validate=True)
        blob = base64.b64decode(blob_b64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise SessionError(f"Encrypted cookie is not valid base64: {exc}") from exc
    if len(key) != 32:
        raise SessionError("Cookie key must decode to 32 bytes")
    if len(blob) <= _IV_BYTES + _TAG_BYTES:
        raise SessionError("Encrypted cookie blob is too short")

    iv = blob[:_IV_BYTES]
    tag = blob[_IV_BYTES:_IV_BYTES + _TAG_BYTES]
    ciphertext = blob[_IV_BYTES + _TAG_BYTES:]
    try:
        # AESGCM expects the tag appended to the ciphertext
        plain = AESGCM(key).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as exc:
        raise SessionError("Encrypted cookie failed authentication") from exc
    return plain.decode("utf-8")


def _read_cookie_file(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise SessionError(f"Cannot read session file {path}: {exc}") from exc


def load_credential(
    settings: Settings | None = None,
) -> SessionCredential | None:
    """Return the configured credential, or ``None`` when absent.

    Cookie mode looks, in order, at the inline cookie variable, a
    cookie file, then an encrypted blob plus key.  Bearer mode reads the
    API token.

    Raises:
        SessionError: when a source is configured but unusable.
    """
    cfg = settings or Settings()

    if cfg.CREDENTIAL_MODE == BEARER_MODE:
        token = os.getenv(ENV_API_TOKEN, "").strip()
        if not token:
            return None
        return SessionCredential(token, BEARER_MODE, ENV_API_TOKEN)

    inline = os.getenv(ENV_COOKIE, "")
    if inline.strip():
        value = normalize_cookie_header(inline)
        return SessionCredential(value, COOKIE_MODE, ENV_COOKIE) if value else None

    cookie_file = os.getenv(ENV_COOKIE_FILE, "").strip()
    if cookie_file:
        value = normalize_cookie_header(_read_cookie_file(Path(cookie_file)))
        if not value:
            logger.warning("Session file %s is empty", cookie_file)
            return None
        return SessionCredential(value, COOKIE_MODE, ENV_COOKIE_FILE)

    encrypted = os.getenv(ENV_COOKIE_ENCRYPTED, "").strip()
    if encrypted:
        key = os.getenv(ENV_COOKIE_KEY, "").strip()
        if not key:
            raise SessionError(
                f"{ENV_COOKIE_ENCRYPTED} is set but {ENV_COOKIE_KEY} is missing"
            )
        value = normalize_cookie_header(decrypt_cookie(encrypted, key))
        return (
            SessionCredential(value, COOKIE_MODE, ENV_COOKIE_ENCRYPTED)
            if value else None
        )

    return None


def load_api_token() -> SessionCredential | None:
    """Bearer token for the items API fallback, if one is configured."""
    token = os.getenv(ENV_API_TOKEN, "").strip()
    if not token:
        return None
    return SessionCredential(token, BEARER_MODE, ENV_API_TOKEN)
