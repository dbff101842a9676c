"""
Cached authorization token for a single adapter instance.

Refresh is check-then-refresh and not serialized: two callers that both see
an expired token will both fetch, and the last write wins.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

logger = logging.getLogger(__name__)

# Treat a token as expired this many seconds before its real expiry
EXPIRY_MARGIN_SECONDS = 60


@dataclass
class TokenState:
    """Access token plus its absolute expiry (unix seconds)."""
    token: Optional[str] = None
    expires_at: float = 0.0
    refresh_count: int = 0

    def is_valid(self, now: Optional[float] = None) -> bool:
        """True if a token is held and not within the expiry margin."""
        now = time.time() if now is None else now
        return bool(self.token) and now < self.expires_at - EXPIRY_MARGIN_SECONDS

    def store(self, token: str, expires_in: float, now: Optional[float] = None) -> None:
        """Replace the cached token (overwrite with latest)."""
        now = time.time() if now is None else now
        self.token = token
        self.expires_at = now + float(expires_in)
        self.refresh_count += 1

    def invalidate(self) -> None:
        """Forget the cached token, e.g. after a 401."""
        self.token = None
        self.expires_at = 0.0

    def get_or_refresh(self, fetch: Callable[[], Tuple[str, float]]) -> str:
        """
        Return a valid token, calling fetch() to refresh when needed.

        Args:
            fetch: Callable returning (access_token, expires_in_seconds)

        Returns:
            The current access token
        """
        if self.is_valid():
            return self.token  # type: ignore[return-value]

        token, expires_in = fetch()
        self.store(token, expires_in)
        logger.debug(f"Refreshed access token (refresh #{self.refresh_count}, expires in {expires_in}s)")
        return token


__all__ = ["TokenState", "EXPIRY_MARGIN_SECONDS"]
