import asyncio
import logging
import threading
import time
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, Optional

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def now_ms() -> float:
    """Wall-clock time in milliseconds."""
    return time.time() * 1000.0


class GuardrailInputError(ValueError):
    """Raised when a cache key or client id is not a usable string."""


def _require_str(value: Any, what: str) -> str:
    if not isinstance(value, str):
        raise GuardrailInputError(f"{what} must be a string, got {type(value).__name__}")
    return value


@dataclass
class CacheEntry:
    data: Any
    created_at: float
    last_accessed: float
    expires_at: float


class TTLCache:
    """
    In-memory, per-process TTL cache with approximate LRU eviction.

    Expiry is checked lazily on get() and swept by cleanup(). Eviction only
    happens on set() of a new key while the cache is full: the entry with the
    oldest last_accessed goes first.
    """
    def __init__(self, max_size: int = 50, default_ttl_ms: float = 5 * 60 * 1000, clock: Clock = now_ms):
        self.max_size = max_size
        self.default_ttl_ms = default_ttl_ms
        self._clock = clock
        # Ordered least to most recently used; hits and sets move a key to the end.
        self._store: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._invalidations = 0
        self._evictions = 0

    def get(self, key: str) -> Optional[Any]:
        _require_str(key, "Cache key")
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                self._misses += 1
                return None
            if now >= entry.expires_at:
                del self._store[key]
                self._misses += 1
                self._invalidations += 1
                return None
            entry.last_accessed = now
            self._store.move_to_end(key)
            self._hits += 1
        logger.debug("Cache hit for key %s", key)
        return entry.data

    def peek_entry(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry for key without counting an access."""
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
            if entry is None or now >= entry.expires_at:
                return None
            return entry

    def set(self, key: str, value: Any, ttl_ms: Optional[float] = None) -> None:
        _require_str(key, "Cache key")
        ttl = self.default_ttl_ms if ttl_ms is None else ttl_ms
        now = self._clock()
        with self._lock:
            if key not in self._store and len(self._store) >= self.max_size:
                self._evict_oldest()
            self._store[key] = CacheEntry(
                data=value,
                created_at=now,
                last_accessed=now,
                expires_at=now + ttl,
            )
            self._store.move_to_end(key)
        logger.debug("Cached key %s (ttl=%sms)", key, ttl)

    def _evict_oldest(self) -> None:
        # Front of the OrderedDict is the entry with the oldest last_accessed,
        # with ties resolved by access order.
        if not self._store:
            return
        oldest_key, _ = self._store.popitem(last=False)
        self._evictions += 1
        logger.debug("Evicted least recently used key %s", oldest_key)

    def invalidate(self, key: str) -> bool:
        _require_str(key, "Cache key")
        with self._lock:
            deleted = self._store.pop(key, None) is not None
            if deleted:
                self._invalidations += 1
        if deleted:
            logger.debug("Invalidated key %s", key)
        return deleted

    def clear(self) -> None:
        with self._lock:
            removed = len(self._store)
            self._store.clear()
            self._invalidations += removed
        logger.info("Cache cleared, removed %d entries", removed)

    def cleanup(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, entry in self._store.items() if entry.expires_at <= now]
            for k in expired:
                del self._store[k]
            self._invalidations += len(expired)
        if expired:
            logger.info("Cache cleanup removed %d expired entries", len(expired))
        return len(expired)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            accesses = self._hits + self._misses
            hit_rate = f"{self._hits / accesses * 100:.2f}%" if accesses else "0%"
            return {
                "hits": self._hits,
                "misses": self._misses,
                "invalidations": self._invalidations,
                "evictions": self._evictions,
                "size": len(self._store),
                "max_size": self.max_size,
                "hit_rate": hit_rate,
            }

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.peek_entry(key) is not None


@dataclass
class RateLimitConfig:
    max_requests: int = 100
    window_ms: float = 15 * 60 * 1000


@dataclass
class RateLimitInfo:
    limit: int
    current: int
    remaining: int
    # Approximate: now + window, not the instant the oldest hit ages out.
    reset_time: datetime


class SlidingWindowRateLimiter:
    """
    In-memory, per-process, per-client sliding window rate limiter.
    Rejected requests are not recorded, so they never consume quota.
    """
    def __init__(self, cfg: RateLimitConfig, clock: Clock = now_ms):
        self.cfg = cfg
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _prune(q: Deque[float], window_start: float) -> None:
        while q and q[0] <= window_start:
            q.popleft()

    def is_allowed(self, client_id: str) -> bool:
        _require_str(client_id, "Client id")
        now = self._clock()
        window_start = now - self.cfg.window_ms
        with self._lock:
            q = self._hits.get(client_id)
            if q is None:
                q = deque()
                self._hits[client_id] = q

            self._prune(q, window_start)

            if len(q) >= self.cfg.max_requests:
                return False

            q.append(now)
            return True

    def get_info(self, client_id: str) -> RateLimitInfo:
        _require_str(client_id, "Client id")
        now = self._clock()
        window_start = now - self.cfg.window_ms
        with self._lock:
            q = self._hits.get(client_id, ())
            current = sum(1 for ts in q if ts > window_start)
        return RateLimitInfo(
            limit=self.cfg.max_requests,
            current=current,
            remaining=max(0, self.cfg.max_requests - current),
            reset_time=datetime.fromtimestamp((now + self.cfg.window_ms) / 1000.0, tz=timezone.utc),
        )

    def cleanup(self) -> int:
        window_start = self._clock() - self.cfg.window_ms
        with self._lock:
            idle = []
            for client_id, q in self._hits.items():
                self._prune(q, window_start)
                if not q:
                    idle.append(client_id)
            for client_id in idle:
                del self._hits[client_id]
        if idle:
            logger.info("Rate limiter cleanup removed %d inactive clients", len(idle))
        return len(idle)

    @property
    def active_clients(self) -> int:
        return len(self._hits)


class CleanupScheduler:
    """
    Runs cleanup jobs on a fixed interval as an asyncio background task.
    The task belongs to the scheduler: start() it inside a running loop and
    await stop() to cancel it. Tests can call run_once() instead.
    """
    def __init__(self, interval_ms: float, jobs: Dict[str, Callable[[], int]]):
        self.interval_ms = interval_ms
        self.jobs = dict(jobs)
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def run_once(self) -> Dict[str, int]:
        return {name: job() for name, job in self.jobs.items()}

    async def _run(self) -> None:
        interval = self.interval_ms / 1000.0
        while True:
            await asyncio.sleep(interval)
            for name, job in self.jobs.items():
                try:
                    job()
                except Exception:
                    logger.exception("Cleanup job %s failed", name)


@dataclass
class Guardrails:
    cache: TTLCache
    rate_limiter: SlidingWindowRateLimiter
    scheduler: CleanupScheduler = field(repr=False)


def build_guardrails(cfg, clock: Clock = now_ms) -> Guardrails:
    """Construct the process-wide cache, limiter and cleanup schedule from settings."""
    cache = TTLCache(max_size=cfg.max_cache_size, default_ttl_ms=cfg.default_ttl_ms, clock=clock)
    rate_limiter = SlidingWindowRateLimiter(
        RateLimitConfig(max_requests=cfg.rate_limit_max_requests, window_ms=cfg.rate_limit_window_ms),
        clock=clock,
    )
    scheduler = CleanupScheduler(
        cfg.cleanup_interval_ms,
        {"cache": cache.cleanup, "rate_limiter": rate_limiter.cleanup},
    )
    return Guardrails(cache=cache, rate_limiter=rate_limiter, scheduler=scheduler)
