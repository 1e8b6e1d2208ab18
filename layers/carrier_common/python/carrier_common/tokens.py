# layers/carrier_common/python/carrier_common/tokens.py
"""
OAuth client-credentials token cache.

Tokens are kept per key (token endpoint + client id) together with the time
they stop being usable. An expired or missing entry is fetched again.
"""

import time
import logging
from typing import Callable, Dict, Hashable, Optional, Tuple

from .config import TOKEN_EXPIRY_MARGIN

logger = logging.getLogger(__name__)

# Used when the token endpoint does not report expires_in
DEFAULT_LIFETIME_SECONDS = 3600

Fetcher = Callable[[], Tuple[str, Optional[int]]]


class TokenCache:
    def __init__(self, margin: int = TOKEN_EXPIRY_MARGIN, clock: Callable[[], float] = time.time):
        self.margin = margin
        self.clock = clock
        self._entries: Dict[Hashable, Tuple[str, float]] = {}

    def get(self, key: Hashable, fetch: Fetcher) -> str:
        """
        Return the cached token for key, calling fetch() when it is missing or
        expired. fetch returns (token, expires_in_seconds or None).
        """
        now = self.clock()
        entry = self._entries.get(key)
        if entry is not None and now < entry[1]:
            return entry[0]

        token, expires_in = fetch()
        lifetime = expires_in if expires_in else DEFAULT_LIFETIME_SECONDS
        expires_at = now + max(lifetime - self.margin, 1)
        self._entries[key] = (token, expires_at)
        logger.info(f"Fetched token for {key[0] if isinstance(key, tuple) else key}, valid {int(expires_at - now)}s")
        return token

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        """Drop one entry, or all of them."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)
