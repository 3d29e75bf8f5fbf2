"""In-process response cache with per-entry expiry."""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Any, Callable

from .utils import redact_url

logger = logging.getLogger(__name__)


class ResponseCache:
    """Bounded TTL key/value store used to memoise upstream calls.

    Entries are evicted least-recently-used once ``max_entries`` is reached.
    The methods are coroutines so a networked store can be dropped in behind
    the same interface.
    """

    def __init__(
        self,
        *,
        default_ttl: float = 3_600,
        max_entries: int = 5_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self._default_ttl = default_ttl
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, Any]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        self._entries.move_to_end(key)
        return value

    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        effective_ttl = self._default_ttl if ttl is None else ttl
        if effective_ttl <= 0:
            return
        self._entries[key] = (self._clock() + effective_ttl, value)
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted cache entry %s", redact_url(evicted))
