# src/storage/catalog_db.py

"""SQLite-backed catalog: tracked offers, current prices and job runs."""

import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, cast

from src.config.settings import Settings
from src.models.job_run import JobRun
from src.models.price_observation import PriceObservation
from src.models.tracked_offer import TrackedOffer
from src.scrapers.errors import PersistenceError

logger = logging.getLogger("price_refresh.catalog")

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS products (
    id               TEXT    PRIMARY KEY,
    title            TEXT    NOT NULL DEFAULT '',
    price            REAL,
    original_price   REAL,
    currency         TEXT,
    price_updated_at TEXT
);

CREATE TABLE IF NOT EXISTS store_offers (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    product_id      TEXT    NOT NULL
                    REFERENCES products(id) ON DELETE CASCADE,
    platform        TEXT    NOT NULL,
    external_id     TEXT,
    url             TEXT,
    is_active       INTEGER NOT NULL DEFAULT 1,
    price           REAL,
    original_price  REAL,
    currency        TEXT,
    price_override  REAL,
    last_status     TEXT,
    last_checked_at TEXT,
    updated_at      TEXT,
    UNIQUE (product_id, platform)
);

CREATE TABLE IF NOT EXISTS offer_last_price (
    offer_id        INTEGER PRIMARY KEY
                    REFERENCES store_offers(id) ON DELETE CASCADE,
    external_id     TEXT    NOT NULL,
    price           REAL    NOT NULL,
    original_price  REAL,
    currency        TEXT    NOT NULL,
    is_available    INTEGER NOT NULL DEFAULT 1,
    evidence_kind   TEXT    NOT NULL,
    last_checked_at TEXT    NOT NULL,
    raw             TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS offer_price_snapshots (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    offer_id       INTEGER NOT NULL
                   REFERENCES store_offers(id) ON DELETE CASCADE,
    snapshot_date  TEXT    NOT NULL,
    price          REAL    NOT NULL,
    original_price REAL,
    currency       TEXT    NOT NULL,
    evidence_kind  TEXT    NOT NULL,
    collected_at   TEXT    NOT NULL,
    UNIQUE (offer_id, snapshot_date)
);

CREATE TABLE IF NOT EXISTS price_job_runs (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    platform      TEXT    NOT NULL,
    status        TEXT    NOT NULL,
    started_at    TEXT    NOT NULL,
    finished_at   TEXT,
    stats         TEXT    NOT NULL DEFAULT '{}',
    error         TEXT,
    stopped_early INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_offers_platform_active
    ON store_offers(platform, is_active, id);
"""

_OFFER_COLUMNS = (
    "id, product_id, platform, external_id, url, is_active, price_override"
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_offer(row: tuple[Any, ...]) -> TrackedOffer:
    return TrackedOffer(
        id=int(row[0]),
        product_id=str(row[1]),
        platform=str(row[2]),
        external_id=row[3],
        url=row[4],
        is_active=bool(row[5]),
        price_override=row[6],
    )


class CatalogDB:
    """SQLite store shared by the refresh workers.

    One connection is shared across worker threads, so every statement
    runs under ``self._lock``.
    """

    def __init__(
        self, db_path: Path | None = None,
    ) -> None:
        path = db_path or Settings.DB_PATH
        path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(
            str(path), check_same_thread=False,
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(_SCHEMA)
        logger.debug("CatalogDB opened at %s", path)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    # ── Catalog setup ────────────────────────────────────

    def upsert_product(self, product_id: str, title: str = "") -> None:
        """Create a catalog product or refresh its title."""
        with self._lock:
            self._conn.execute(
                "INSERT INTO products (id, title) VALUES (?, ?) "
                "ON CONFLICT(id) DO UPDATE SET title=excluded.title",
                (product_id, title),
            )
            self._conn.commit()

    def add_offer(
        self,
        product_id: str,
        platform: str,
        external_id: str | None = None,
        url: str | None = None,
        is_active: bool = True,
        price_override: float | None = None,
    ) -> int:
        """Insert (or replace the link of) a tracked offer; returns its id."""
        with self._lock:
            self._conn.execute(
                "INSERT OR IGNORE INTO products (id) VALUES (?)",
                (product_id,),
            )
            self._conn.execute(
                "INSERT INTO store_offers "
                "(product_id, platform, external_id, url, is_active, "
                " price_override, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(product_id, platform) DO UPDATE SET "
                "external_id=excluded.external_id, url=excluded.url, "
                "is_active=excluded.is_active, "
                "price_override=excluded.price_override, "
                "updated_at=excluded.updated_at",
                (
                    product_id, platform, external_id, url,
                    int(is_active), price_override, _now_iso(),
                ),
            )
            offer_id: int = self._conn.execute(
                "SELECT id FROM store_offers "
                "WHERE product_id = ? AND platform = ?",
                (product_id, platform),
            ).fetchone()[0]
            self._conn.commit()
        return offer_id

    def import_offers(self, filepath: Path, platform: str) -> int:
        """Load offers from a JSON list of ``{product_id, external_id, url}``.

        Returns the number of offers imported.
        """
        try:
            with open(filepath, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Failed to read %s: %s", filepath, exc)
            return 0
        if not isinstance(data, list):
            return 0

        items: list[object] = cast(list[object], data)
        count = 0
        for entry in items:
            if not isinstance(entry, dict):
                continue
            row = cast(dict[str, Any], entry)
            product_id = str(row.get("product_id") or "").strip()
            if not product_id:
                continue
            self.upsert_product(product_id, str(row.get("title") or ""))
            override = row.get("price_override")
            self.add_offer(
                product_id=product_id,
                platform=str(row.get("platform") or platform),
                external_id=row.get("external_id") or None,
                url=row.get("url") or None,
                is_active=bool(row.get("is_active", True)),
                price_override=(
                    float(override) if override is not None else None
                ),
            )
            count += 1
        logger.info("Imported %d offers from %s", count, filepath)
        return count

    # ── Offer source ─────────────────────────────────────

    def fetch_offer_page(
        self, platform: str, after_id: int, limit: int,
    ) -> list[TrackedOffer]:
        """Active offers of *platform* with ``id > after_id``, by id.

        Keyset paging keeps pages stable while the run deactivates
        offers it has already passed.
        """
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_OFFER_COLUMNS} FROM store_offers "
                "WHERE platform = ? AND is_active = 1 AND id > ? "
                "ORDER BY id LIMIT ?",
                (platform, after_id, limit),
            ).fetchall()
        return [_row_to_offer(r) for r in rows]

    def get_offer(self, offer_id: int) -> TrackedOffer | None:
        """Return one offer by id."""
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_OFFER_COLUMNS} FROM store_offers WHERE id = ?",
                (offer_id,),
            ).fetchone()
        return _row_to_offer(row) if row else None

    def first_active_offer(self, platform: str) -> TrackedOffer | None:
        """Any active offer with an identifier, for health probes."""
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_OFFER_COLUMNS} FROM store_offers "
                "WHERE platform = ? AND is_active = 1 "
                "AND (external_id IS NOT NULL OR url IS NOT NULL) "
                "ORDER BY id LIMIT 1",
                (platform,),
            ).fetchone()
        return _row_to_offer(row) if row else None

    # ── Price persistence ────────────────────────────────

    def record_observation(
        self, obs: PriceObservation, canonical_url: str | None = None,
    ) -> None:
        """Persist one observation and mirror it onto the catalog.

        In one transaction: upsert ``offer_last_price``, add the daily
        snapshot (first reading of the UTC day wins), copy the price
        onto the offer and its product, and store the canonical URL.

        Raises:
            PersistenceError: when any statement fails.
        """
        ts = obs.observed_at.isoformat()
        snapshot_date = obs.observed_at.astimezone(timezone.utc).date().isoformat()
        raw = json.dumps(obs.raw_evidence(), ensure_ascii=False)
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    "INSERT INTO offer_last_price "
                    "(offer_id, external_id, price, original_price, "
                    " currency, is_available, evidence_kind, "
                    " last_checked_at, raw) "
                    "VALUES (?, ?, ?, ?, ?, 1, ?, ?, ?) "
                    "ON CONFLICT(offer_id) DO UPDATE SET "
                    "external_id=excluded.external_id, "
                    "price=excluded.price, "
                    "original_price=excluded.original_price, "
                    "currency=excluded.currency, "
                    "is_available=excluded.is_available, "
                    "evidence_kind=excluded.evidence_kind, "
                    "last_checked_at=excluded.last_checked_at, "
                    "raw=excluded.raw",
                    (
                        obs.offer_id, obs.external_id, obs.price,
                        obs.original_price, obs.currency,
                        obs.evidence_kind, ts, raw,
                    ),
                )
                self._conn.execute(
                    "INSERT OR IGNORE INTO offer_price_snapshots "
                    "(offer_id, snapshot_date, price, original_price, "
                    " currency, evidence_kind, collected_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        obs.offer_id, snapshot_date, obs.price,
                        obs.original_price, obs.currency,
                        obs.evidence_kind, ts,
                    ),
                )
                self._conn.execute(
                    "UPDATE store_offers SET price = ?, "
                    "original_price = ?, currency = ?, "
                    "url = COALESCE(?, url), last_status = 'updated', "
                    "last_checked_at = ?, updated_at = ? WHERE id = ?",
                    (
                        obs.price, obs.original_price, obs.currency,
                        canonical_url, ts, ts, obs.offer_id,
                    ),
                )
                self._conn.execute(
                    "UPDATE products SET price = ?, original_price = ?, "
                    "currency = ?, price_updated_at = ? "
                    "WHERE id = (SELECT product_id FROM store_offers "
                    "            WHERE id = ?)",
                    (
                        obs.price, obs.original_price, obs.currency,
                        ts, obs.offer_id,
                    ),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(
                f"Saving price for offer_id={obs.offer_id} failed: {exc}"
            ) from exc

    def mark_offer_status(self, offer_id: int, status: str) -> None:
        """Record the outcome of the latest check on an offer."""
        ts = _now_iso()
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    "UPDATE store_offers SET last_status = ?, "
                    "last_checked_at = ? WHERE id = ?",
                    (status, ts, offer_id),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(
                f"Updating status for offer_id={offer_id} failed: {exc}"
            ) from exc

    def deactivate_offer(self, offer_id: int) -> None:
        """Stop tracking an offer the marketplace no longer serves."""
        ts = _now_iso()
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    "UPDATE store_offers SET is_active = 0, "
                    "last_status = 'not_found', last_checked_at = ?, "
                    "updated_at = ? WHERE id = ?",
                    (ts, ts, offer_id),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(
                f"Deactivating offer_id={offer_id} failed: {exc}"
            ) from exc

    def get_last_price(self, offer_id: int) -> dict[str, object] | None:
        """Current observation for an offer, with its raw evidence."""
        with self._lock:
            row = self._conn.execute(
                "SELECT external_id, price, original_price, currency, "
                "       evidence_kind, last_checked_at, raw "
                "FROM offer_last_price WHERE offer_id = ?",
                (offer_id,),
            ).fetchone()
        if row is None:
            return None
        return {
            "external_id": row[0],
            "price": row[1],
            "original_price": row[2],
            "currency": row[3],
            "evidence_kind": row[4],
            "last_checked_at": row[5],
            "raw": json.loads(row[6]),
        }

    def count_snapshots(self, offer_id: int) -> int:
        """Number of daily snapshots stored for an offer."""
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(id) FROM offer_price_snapshots "
                "WHERE offer_id = ?",
                (offer_id,),
            ).fetchone()
        return int(row[0])

    def get_offer_prices(self, offer_id: int) -> dict[str, object] | None:
        """Cached price fields of an offer and of its product."""
        with self._lock:
            row = self._conn.execute(
                "SELECT o.price, o.currency, o.url, o.last_status, "
                "       p.price, p.currency "
                "FROM store_offers o JOIN products p ON p.id = o.product_id "
                "WHERE o.id = ?",
                (offer_id,),
            ).fetchone()
        if row is None:
            return None
        return {
            "offer_price": row[0],
            "offer_currency": row[1],
            "url": row[2],
            "last_status": row[3],
            "product_price": row[4],
            "product_currency": row[5],
        }

    # ── Job runs ─────────────────────────────────────────

    def create_job_run(self, run: JobRun) -> int:
        """Insert a ``running`` job record and return its id."""
        with self._lock, self._conn:
            cur = self._conn.execute(
                "INSERT INTO price_job_runs "
                "(platform, status, started_at, stats) "
                "VALUES (?, ?, ?, ?)",
                (
                    run.platform, run.status,
                    run.started_at.isoformat(), json.dumps(run.stats),
                ),
            )
            run_id = cur.lastrowid
        if run_id is None:
            raise PersistenceError("Creating the job run returned no id")
        run.id = run_id
        return run_id

    def finish_job_run(self, run: JobRun) -> None:
        """Write the final status, counters and error sample."""
        if run.id is None:
            raise PersistenceError("Cannot finish a job run without an id")
        finished = run.finished_at or datetime.now(timezone.utc)
        with self._lock, self._conn:
            self._conn.execute(
                "UPDATE price_job_runs SET status = ?, finished_at = ?, "
                "stats = ?, error = ?, stopped_early = ? WHERE id = ?",
                (
                    run.status, finished.isoformat(),
                    json.dumps(run.stats), run.error_sample,
                    int(run.stopped_early), run.id,
                ),
            )

    def get_job_run(self, run_id: int) -> dict[str, object] | None:
        """Return one job run record."""
        with self._lock:
            row = self._conn.execute(
                "SELECT id, platform, status, started_at, finished_at, "
                "       stats, error, stopped_early "
                "FROM price_job_runs WHERE id = ?",
                (run_id,),
            ).fetchone()
        if row is None:
            return None
        return {
            "id": row[0],
            "platform": row[1],
            "status": row[2],
            "started_at": row[3],
            "finished_at": row[4],
            "stats": json.loads(row[5]),
            "error": row[6],
            "stopped_early": bool(row[7]),
        }
