# src/scrapers/errors.py

"""Exception hierarchy for the price refresh engine."""


class PriceRefreshError(Exception):
    """Base class for engine errors."""


class FetchError(PriceRefreshError):
    """A request failed on the network and retries were exhausted."""

    def __init__(self, url: str, message: str) -> None:
        super().__init__(f"Fetch failed for {url}: {message}")
        self.url = url


class SessionError(PriceRefreshError):
    """The session credential is missing or unusable for this run."""


class PersistenceError(PriceRefreshError):
    """Writing an observation or run record to the catalog failed."""
