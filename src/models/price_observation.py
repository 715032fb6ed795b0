# src/models/price_observation.py

"""Price extraction results and persisted price observations."""

from dataclasses import dataclass, field
from datetime import datetime, timezone

# Evidence kinds, strongest first
EVIDENCE_META = "meta"
EVIDENCE_JSON_LD = "json_ld"
EVIDENCE_PRELOADED_STATE = "preloaded_state"
EVIDENCE_NEXT_DATA = "next_data"
EVIDENCE_REGEX = "regex"
EVIDENCE_API = "api"
EVIDENCE_OVERRIDE = "override"

WEAK_EVIDENCE: frozenset[str] = frozenset({EVIDENCE_REGEX})


@dataclass
class ExtractedPrice:
    """A price reading pulled out of one page."""

    price: float
    currency: str
    evidence_kind: str
    original_price: float | None = None

    @property
    def is_weak(self) -> bool:
        """Weak readings are only kept when nothing stronger turns up."""
        return self.evidence_kind in WEAK_EVIDENCE


@dataclass
class PriceObservation:
    """The current price of one offer together with its provenance."""

    offer_id: int
    external_id: str
    price: float
    currency: str
    evidence_kind: str
    original_price: float | None = None
    content_hash: str = ""
    fetch_url: str = ""
    final_url: str = ""
    page_title: str = ""
    observed_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def raw_evidence(self) -> dict[str, object]:
        """Audit payload stored next to the price."""
        return {
            "evidence_kind": self.evidence_kind,
            "fetch_url": self.fetch_url,
            "final_url": self.final_url,
            "page_title": self.page_title,
            "content_hash": self.content_hash,
        }
