"""Per-user request budgets for gateway endpoints."""

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Tuple

from supabase import Client

from aitools.errors import RateLimited

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateRule:
    max_requests: int
    window_seconds: int


@dataclass
class RateDecision:
    allowed: bool
    current_count: int
    retry_after: int = 0


class RateLimiter(ABC):
    @abstractmethod
    def hit(self, key: str, endpoint: str, rule: RateRule) -> RateDecision:
        """Record one request and say whether it fits the budget."""
        ...

    def enforce(self, key: str, endpoint: str, rule: RateRule) -> None:
        decision = self.hit(key, endpoint, rule)
        if not decision.allowed:
            logger.warning("Rate limit exceeded key=%s endpoint=%s count=%s", key, endpoint, decision.current_count)
            raise RateLimited(
                "Too many requests. Please wait before trying again.",
                retry_after=decision.retry_after or rule.window_seconds,
            )


class InMemoryRateLimiter(RateLimiter):
    """Rolling window: at most ``max_requests`` in any ``window_seconds`` span."""

    def __init__(self, clock: Callable[[], float] = time.monotonic, sweep_every: int = 256):
        self._hits: Dict[Tuple[str, str], Deque[float]] = defaultdict(deque)
        self._windows: Dict[Tuple[str, str], int] = {}
        self._clock = clock
        self._lock = threading.Lock()
        self._sweep_every = sweep_every
        self._calls = 0

    def __len__(self) -> int:
        return len(self._hits)

    def _sweep(self, now: float) -> None:
        # Forget keys whose newest hit has left its window.
        expired = [k for k, hits in self._hits.items() if not hits or now - hits[-1] >= self._windows[k]]
        for k in expired:
            del self._hits[k]
            del self._windows[k]

    def hit(self, key: str, endpoint: str, rule: RateRule) -> RateDecision:
        now = self._clock()
        with self._lock:
            self._calls += 1
            if self._calls % self._sweep_every == 0:
                self._sweep(now)
            self._windows[(key, endpoint)] = rule.window_seconds
            hits = self._hits[(key, endpoint)]
            while hits and now - hits[0] >= rule.window_seconds:
                hits.popleft()
            if len(hits) >= rule.max_requests:
                retry_after = int(rule.window_seconds - (now - hits[0])) + 1
                return RateDecision(False, len(hits), retry_after)
            hits.append(now)
            return RateDecision(True, len(hits))


class SupabaseRateLimiter(RateLimiter):
    """Delegates counting to the ``check_rate_limit`` database function.

    Fails open when the function itself errors so a database hiccup does not
    take every tool offline.
    """

    def __init__(self, client: Client):
        self._client = client

    def hit(self, key: str, endpoint: str, rule: RateRule) -> RateDecision:
        try:
            data = self._client.rpc(
                "check_rate_limit",
                {
                    "_ip_address": key,
                    "_endpoint": endpoint,
                    "_max_requests": rule.max_requests,
                    "_window_seconds": rule.window_seconds,
                },
            ).execute().data
        except Exception as exc:
            logger.error("Rate limit check failed endpoint=%s error=%s", endpoint, exc)
            return RateDecision(True, 0)
        row = (data or [{}])[0] if isinstance(data, list) else (data or {})
        allowed = bool(row.get("allowed", True))
        return RateDecision(allowed, int(row.get("current_count") or 0), 0 if allowed else rule.window_seconds)
