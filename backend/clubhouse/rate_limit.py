# clubhouse/rate_limit.py
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import HTTPException, Request
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from .config import get_settings

logger = logging.getLogger(__name__)

SWEEP_THRESHOLD = 10_000


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float  # unix seconds

    def retry_after(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        return max(1, int(self.reset_at - now + 0.999))


class CounterStore:
    """
    Fixed-window counter storage. `hit` must be atomic per key:
      - missing or expired entry -> (1, now + window), allowed
      - count >= max_requests    -> unchanged, denied
      - otherwise                -> count + 1, allowed
    """

    def hit(self, key: str, window_seconds: float, max_requests: int, now: float) -> RateLimitResult:
        raise NotImplementedError


class MemoryCounterStore(CounterStore):
    """Process-local store. Only correct for a single instance."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[int, float]] = {}

    def hit(self, key: str, window_seconds: float, max_requests: int, now: float) -> RateLimitResult:
        with self._lock:
            if len(self._entries) > SWEEP_THRESHOLD:
                self._sweep(now)

            entry = self._entries.get(key)
            if entry is None or entry[1] < now:
                reset_at = now + window_seconds
                self._entries[key] = (1, reset_at)
                return RateLimitResult(True, max_requests - 1, reset_at)

            count, reset_at = entry
            if count >= max_requests:
                return RateLimitResult(False, 0, reset_at)

            self._entries[key] = (count + 1, reset_at)
            return RateLimitResult(True, max_requests - count - 1, reset_at)

    def _sweep(self, now: float) -> None:
        expired = [k for k, (_, reset_at) in self._entries.items() if reset_at < now]
        for k in expired:
            del self._entries[k]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class DatabaseCounterStore(CounterStore):
    """
    Shared store: one rate_limit_counters row per key.
    The read-modify-write runs inside one transaction with the row locked
    (SELECT ... FOR UPDATE on Postgres; SQLite serializes writers).
    """

    def __init__(self, session_factory: Callable[[], Session] | sessionmaker) -> None:
        self._session_factory = session_factory

    def hit(self, key: str, window_seconds: float, max_requests: int, now: float) -> RateLimitResult:
        from .models import RateLimitCounter

        db = self._session_factory()
        try:
            for _ in range(2):
                try:
                    row = db.scalar(
                        select(RateLimitCounter)
                        .where(RateLimitCounter.key == key)
                        .with_for_update()
                    )

                    if row is None:
                        reset_at = now + window_seconds
                        db.add(RateLimitCounter(key=key, count=1, reset_at=reset_at))
                        db.commit()
                        return RateLimitResult(True, max_requests - 1, reset_at)

                    if row.reset_at < now:
                        row.count = 1
                        row.reset_at = now + window_seconds
                        db.commit()
                        return RateLimitResult(True, max_requests - 1, row.reset_at)

                    if row.count >= max_requests:
                        reset_at = row.reset_at
                        db.rollback()
                        return RateLimitResult(False, 0, reset_at)

                    row.count = row.count + 1
                    remaining = max_requests - row.count
                    reset_at = row.reset_at
                    db.commit()
                    return RateLimitResult(True, remaining, reset_at)

                except IntegrityError:
                    # Another instance inserted the key first; retry as an update.
                    db.rollback()

            raise RuntimeError(f"rate limit counter contention for key {key!r}")
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


class RateLimiter:
    def __init__(
        self,
        window_seconds: float,
        max_requests: int,
        store: Optional[CounterStore] = None,
        name: str = "default",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.store = store if store is not None else MemoryCounterStore()
        self.name = name
        self._clock = clock

    def check(self, identifier: str) -> RateLimitResult:
        key = f"{self.name}:{identifier}"
        result = self.store.hit(key, self.window_seconds, self.max_requests, self._clock())
        if not result.allowed:
            logger.info("RATE LIMITED %s (%s)", identifier, self.name)
        return result


# -----------------------------
# Presets
# -----------------------------
def _default_store() -> CounterStore:
    if get_settings().rate_limit_backend == "database":
        from .database import SessionLocal

        return DatabaseCounterStore(SessionLocal)
    return MemoryCounterStore()


_store = _default_store()

auth_limiter = RateLimiter(15 * 60, 5, _store, name="auth")      # login
strict_limiter = RateLimiter(60, 10, _store, name="strict")      # signup, password reset
api_limiter = RateLimiter(60, 60, _store, name="api")            # leads


def client_ip(request: Request) -> str:
    forwarded = (request.headers.get("x-forwarded-for") or "").strip()
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = (request.headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


def rate_limit(limiter: RateLimiter):
    """
    FastAPI dependency factory:
        @router.post("/x", dependencies=[Depends(rate_limit(api_limiter))])
    """

    def _dependency(request: Request) -> RateLimitResult:
        result = limiter.check(client_ip(request))
        if not result.allowed:
            retry_after = result.retry_after()
            raise HTTPException(
                status_code=429,
                detail={"error": "Too many requests", "retry_after": retry_after},
                headers={"Retry-After": str(retry_after)},
            )
        return result

    return _dependency
