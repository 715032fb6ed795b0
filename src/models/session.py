# src/models/session.py

"""Opaque marketplace session credential."""

from dataclasses import dataclass

COOKIE_MODE = "cookie"
BEARER_MODE = "bearer"


@dataclass(frozen=True)
class SessionCredential:
    """Externally supplied, time-limited marketplace credential.

    The engine never inspects ``value``; it only turns it into request
    headers for the configured mode.
    """

    value: str
    mode: str = COOKIE_MODE
    source: str = ""

    def headers(self) -> dict[str, str]:
        """Return the request headers that carry this credential."""
        if self.mode == BEARER_MODE:
            return {"Authorization": f"Bearer {self.value}"}
        return {"Cookie": self.value}

    def __repr__(self) -> str:
        return (
            f"SessionCredential(mode={self.mode!r}, "
            f"source={self.source!r}, length={len(self.value)})"
        )
