# src/models/tracked_offer.py

"""Tracked marketplace offer model read from the catalog."""

from dataclasses import dataclass


@dataclass
class TrackedOffer:
    """One marketplace listing tracked for one catalog product."""

    id: int
    product_id: str
    platform: str
    external_id: str | None = None
    url: str | None = None
    is_active: bool = True
    price_override: float | None = None
