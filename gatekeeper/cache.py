"""
Verification cache: raw token -> verified Service until the token's exp.
In-memory and bounded; when full, the oldest entries are pruned in one batch.
A max_size of 0 disables caching entirely (nothing is read or written).
"""
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from gatekeeper.registry import Service
from gatekeeper.verifier import VerifiedToken, utcnow


@dataclass(frozen=True)
class _Entry:
    service: Service
    expires_at: datetime


class VerificationCache:
    def __init__(
        self,
        max_size: int,
        prune_size: int = 100,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.max_size = max(0, max_size)
        self.prune_size = max(1, prune_size)
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.max_size > 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, token: str) -> Service | None:
        """Cached Service for token, or None if absent or past its TTL (expired entries are dropped)."""
        if not self.enabled:
            return None
        now = self._clock()
        with self._lock:
            entry = self._entries.get(token)
            if entry is None:
                return None
            if entry.expires_at <= now:
                del self._entries[token]
                return None
            return entry.service

    def set(self, token: str, service: Service, ttl: timedelta) -> None:
        if not self.enabled or ttl <= timedelta(0):
            return
        entry = _Entry(service=service, expires_at=self._clock() + ttl)
        with self._lock:
            if token in self._entries:
                del self._entries[token]
            elif len(self._entries) >= self.max_size:
                for _ in range(min(self.prune_size, len(self._entries))):
                    self._entries.popitem(last=False)
            self._entries[token] = entry

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_or_verify(self, token: str, verify: Callable[[str], VerifiedToken]) -> Service:
        """
        Return the cached Service for token, or run verify and cache its result until the
        token's exp. Failed verifications are never cached; their errors propagate.
        """
        service = self.get(token)
        if service is not None:
            return service
        result = verify(token)
        self.set(token, result.service, result.claims.expires_at - self._clock())
        return result.service
