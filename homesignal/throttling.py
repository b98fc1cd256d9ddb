"""Idempotent replay of responses and fixed-window rate limiting."""

from __future__ import annotations

import hashlib
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]

REPLAYED_HEADER = "X-HomeSignal-Idempotency-Replayed"


def _system_clock() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Response:
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def clone(self) -> "Response":
        """Return a copy whose headers can be changed independently."""
        return Response(self.status_code, dict(self.headers), bytes(self.body))


class IdempotencyConflict(Exception):
    """Raised when an idempotency key is reused for a different request."""

    code = "IDEMPOTENCY_KEY_REUSED"

    def __init__(
        self, message: str = "Idempotency key was reused with a different request."
    ) -> None:
        super().__init__(message)


@dataclass
class _Entry:
    request_hash: str
    expires_at: datetime
    response: Response


class IdempotencyStore:
    """Remembers responses by scope and key so retried requests get the same answer."""

    def __init__(self, ttl: timedelta = timedelta(minutes=10), clock: Optional[Clock] = None):
        self._ttl = ttl
        self._clock = clock or _system_clock
        self._lock = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    def get_or_store(
        self,
        scope: str,
        key: str,
        request_hash: str,
        produce: Callable[[], Response],
    ) -> Response:
        """Replay the stored response for this key, or produce and store a new one."""
        now = self._clock()
        cache_key = f"{scope}|{key}"
        with self._lock:
            existing = self._entries.get(cache_key)
            if existing is not None:
                if now > existing.expires_at:
                    del self._entries[cache_key]
                elif existing.request_hash != request_hash:
                    raise IdempotencyConflict()
                else:
                    replay = existing.response.clone()
                    replay.headers[REPLAYED_HEADER] = "true"
                    return replay

        response = produce()
        with self._lock:
            self._entries[cache_key] = _Entry(request_hash, now + self._ttl, response.clone())
        return response


@dataclass
class _Bucket:
    reset_at: datetime
    count: int = 0


class RateLimiter:
    """Allows at most ``limit`` calls per scope in each window."""

    def __init__(
        self,
        limit: int = 600,
        window: timedelta = timedelta(minutes=1),
        clock: Optional[Clock] = None,
    ):
        self._limit = limit
        self._window = window
        self._clock = clock or _system_clock
        self._lock = threading.Lock()
        self._buckets: dict[str, _Bucket] = {}

    def allow(self, scope: str) -> tuple[bool, int]:
        """Count a call; return whether it is allowed and, if not, seconds to wait."""
        now = self._clock()
        with self._lock:
            bucket = self._buckets.get(scope)
            if bucket is None or now >= bucket.reset_at:
                bucket = _Bucket(reset_at=now + self._window)
                self._buckets[scope] = bucket
            bucket.count += 1
            if bucket.count <= self._limit:
                return True, 0
            retry_after = int((bucket.reset_at - self._clock()).total_seconds())
            return False, max(retry_after, 1)


def request_hash(method: str, path: str, body: bytes) -> str:
    """Hex SHA-256 of method, path and body, separated by newlines."""
    digest = hashlib.sha256()
    digest.update(method.encode())
    digest.update(b"\n")
    digest.update(path.encode())
    digest.update(b"\n")
    digest.update(body)
    return digest.hexdigest()