"""
=============================================================================
FORMRELAY - RATE LIMITER MODULE
=============================================================================
Per-submitter fixed-window counter for the contact endpoint.

Features:
- One bucket per submitter identifier: {window_start, hit_count}
- Window resets once now - window_start >= 3600 s
- Hit counted before the limit check: the request crossing the limit is
  rejected and still counted
- File backend (default): one JSON record per identifier, best-effort
  read-modify-write, last writer wins
- Redis backend: atomic increment-and-fetch (WATCH/MULTI)
- Trusted-proxy validation for X-Forwarded-For

A fixed window admits a burst of up to 2x the limit around a window
boundary; that is accepted.

Usage:
    limiter = build_rate_limiter(config.limits)
    decision = limiter.admit(client_ip, int(time.time()))
=============================================================================
"""

import enum
import ipaddress
import json
import logging
import os
import re
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

import redis
from fastapi import Request

from formrelay.core.config import settings

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 3600

# Parsed trusted proxy networks (built once at import)
_trusted_networks: List[ipaddress.IPv4Network | ipaddress.IPv6Network] = []


def _build_trusted_networks() -> None:
    """Parse TRUSTED_PROXIES setting into network objects."""
    global _trusted_networks
    nets = []
    for entry in settings.TRUSTED_PROXIES:
        try:
            nets.append(ipaddress.ip_network(entry, strict=False))
        except ValueError:
            logger.warning("Invalid TRUSTED_PROXIES entry ignored: %s", entry)
    _trusted_networks = nets


_build_trusted_networks()


class Decision(str, enum.Enum):
    ALLOWED = "allowed"
    DENIED = "denied"


@dataclass(frozen=True)
class RateBucket:
    identifier: str
    window_start: int
    hit_count: int


def next_bucket(previous: Optional[RateBucket], identifier: str, now: int) -> RateBucket:
    """Apply one hit to ``previous`` (reset first when its window expired)."""
    if previous is None or now - previous.window_start >= WINDOW_SECONDS:
        return RateBucket(identifier, now, 1)
    return RateBucket(identifier, previous.window_start, previous.hit_count + 1)


# =============================================================================
# BACKEND ABSTRACTION
# =============================================================================


class BucketStore(ABC):
    """Storage for rate buckets."""

    @abstractmethod
    def hit(self, identifier: str, now: int) -> RateBucket:
        """Count one hit for ``identifier`` and return the updated bucket."""

    @abstractmethod
    def get(self, identifier: str) -> Optional[RateBucket]:
        """Return the stored bucket, if any."""

    @abstractmethod
    def reset(self) -> None:
        """Clear all state (for tests)."""


class FileBucketStore(BucketStore):
    """One JSON record per identifier under ``root``.

    Read-modify-write without a cross-process lock: two simultaneous requests
    from the same identifier may both read the pre-increment count. Writes go
    through a temp file and an atomic rename so a reader never sees a torn
    record.
    """

    _UNSAFE = re.compile(r"[^a-z0-9.\-:]", re.IGNORECASE)

    def __init__(self, root: str) -> None:
        self.root = Path(root)

    def _path(self, identifier: str) -> Path:
        return self.root / ("bucket_" + self._UNSAFE.sub("_", identifier))

    def get(self, identifier: str) -> Optional[RateBucket]:
        path = self._path(identifier)
        try:
            record = json.loads(path.read_text(encoding="utf-8"))
            return RateBucket(identifier, int(record["ts"]), int(record["hits"]))
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Discarding unreadable rate bucket %s: %s", path.name, exc)
            return None

    def hit(self, identifier: str, now: int) -> RateBucket:
        bucket = next_bucket(self.get(identifier), identifier, now)
        try:
            self._write(bucket)
        except OSError as exc:
            # Counting is best-effort; an unwritable store must not block mail.
            logger.warning("Rate bucket for %s not persisted: %s", bucket.identifier, exc)
        return bucket

    def _write(self, bucket: RateBucket) -> None:
        self.root.mkdir(mode=0o700, parents=True, exist_ok=True)
        path = self._path(bucket.identifier)
        fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=".bucket-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump({"ts": bucket.window_start, "hits": bucket.hit_count}, handle)
            os.replace(tmp_name, path)
        except OSError:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    def reset(self) -> None:
        if not self.root.is_dir():
            return
        for path in self.root.glob("bucket_*"):
            path.unlink(missing_ok=True)


class RedisBucketStore(BucketStore):
    """Redis-backed buckets; the increment is atomic per identifier."""

    PREFIX = "rl:contact:"

    def __init__(self, redis_client) -> None:  # type: ignore[type-arg]
        self._redis = redis_client

    def _key(self, identifier: str) -> str:
        return self.PREFIX + identifier

    def get(self, identifier: str) -> Optional[RateBucket]:
        record = self._redis.hgetall(self._key(identifier))
        if not record:
            return None
        return RateBucket(identifier, int(record["ts"]), int(record["hits"]))

    def hit(self, identifier: str, now: int) -> RateBucket:
        key = self._key(identifier)
        updated: List[RateBucket] = []

        def _apply(pipe) -> None:
            record = pipe.hgetall(key)
            previous = None
            if record:
                previous = RateBucket(identifier, int(record["ts"]), int(record["hits"]))
            bucket = next_bucket(previous, identifier, now)
            pipe.multi()
            pipe.hset(key, mapping={"ts": bucket.window_start, "hits": bucket.hit_count})
            pipe.expire(key, 2 * WINDOW_SECONDS)
            updated[:] = [bucket]

        try:
            # Retries on concurrent modification of ``key`` (optimistic lock).
            self._redis.transaction(_apply, key)
        except redis.RedisError as exc:
            logger.warning("Redis rate store unavailable, admitting %s: %s", identifier, exc)
            return next_bucket(None, identifier, now)
        return updated[0]

    def reset(self) -> None:
        cursor = 0
        while True:
            cursor, keys = self._redis.scan(cursor, match=self.PREFIX + "*", count=500)
            if keys:
                self._redis.delete(*keys)
            if cursor == 0:
                break


# =============================================================================
# LIMITER
# =============================================================================


class RateLimiter:
    def __init__(self, store: BucketStore, limit_per_hour: int) -> None:
        if limit_per_hour < 1:
            raise ValueError("limit_per_hour must be >= 1")
        self.store = store
        self.limit_per_hour = limit_per_hour

    def admit(self, identifier: str, now: int) -> Decision:
        bucket = self.store.hit(identifier, now)
        if bucket.hit_count > self.limit_per_hour:
            logger.warning(
                "Submitter %s over contact limit (%d/%d this window)",
                identifier,
                bucket.hit_count,
                self.limit_per_hour,
            )
            return Decision.DENIED
        return Decision.ALLOWED


@lru_cache(maxsize=8)
def _redis_client(url: str) -> "redis.Redis":
    """One client (and connection pool) per URL for the whole process."""
    return redis.Redis.from_url(url, decode_responses=True, socket_connect_timeout=2)


def build_rate_limiter(limits) -> RateLimiter:
    """Limiter for a ``LimitsSettings`` section of the contact document."""
    if limits.backend == "redis":
        client = _redis_client(limits.redis_url or "redis://localhost:6379/0")
        store: BucketStore = RedisBucketStore(client)
    else:
        store = FileBucketStore(limits.rate_store_path)
    return RateLimiter(store, limits.rate_limit_per_hour)


# =============================================================================
# IP EXTRACTION
# =============================================================================


def _is_trusted_proxy(ip_str: str) -> bool:
    """Check if an IP belongs to the configured trusted proxy ranges."""
    try:
        addr = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    return any(addr in net for net in _trusted_networks)


def get_client_ip(request: Request) -> str:
    """Extract client IP, trusting X-Forwarded-For only from trusted proxies."""
    direct_ip = request.client.host if request.client else "0.0.0.0"

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded and _is_trusted_proxy(direct_ip):
        # Rightmost untrusted IP is the real client
        parts = [p.strip() for p in forwarded.split(",") if p.strip()]
        for ip in reversed(parts):
            if not _is_trusted_proxy(ip):
                return ip
        # All IPs in chain are trusted, use leftmost
        if parts:
            return parts[0]

    return direct_ip
