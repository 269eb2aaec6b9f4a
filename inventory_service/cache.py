"""
Availability Cache

Redis read-through cache of availability snapshots for product pages and cart
checks. It accelerates reads only: reservations never look at it, so a stale
or missing snapshot cannot cause overselling.

Data Format (Redis):
    Key:   "availability:PROD-001"
    Value: '{"product_id": "PROD-001", "available_quantity": 8,
             "status": "low_stock", "as_of_version": 3}'

Freshness:
    - The stock ledger deletes the key after every committed mutation
    - Every entry also carries a short TTL (a few seconds) so a missed
      invalidation, e.g. a crash between commit and delete, ages out quickly

Failure Handling:
    Redis errors surface internally as CacheUnavailable and stop there: reads
    fall back to the loader (the store) and a warning is logged.
"""

import logging
from typing import Callable, Iterable, Optional

import redis
from pydantic import ValidationError

from inventory_service.errors import CacheUnavailable
from inventory_service.schemas import AvailabilitySnapshot

logger = logging.getLogger(__name__)


class AvailabilityCache:
    """Read-through snapshot cache in Redis."""

    KEY_PREFIX = "availability:"
    DEFAULT_TTL = 5  # seconds

    def __init__(self, redis_client: redis.Redis, ttl_seconds: int = DEFAULT_TTL):
        """Initialize availability cache."""
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds

    def get(
        self,
        product_id: str,
        loader: Callable[[str], AvailabilitySnapshot],
    ) -> AvailabilitySnapshot:
        """Return the cached snapshot, or load it from the store and cache it."""
        try:
            cached = self._read(product_id)
        except CacheUnavailable as e:
            logger.warning(f"Availability cache unavailable, reading {product_id} from store: {e}")
            return loader(product_id)

        if cached is not None:
            return cached

        snapshot = loader(product_id)
        try:
            self._write(snapshot)
        except CacheUnavailable as e:
            logger.warning(f"Could not cache availability of {product_id}: {e}")
        return snapshot

    def peek(self, product_id: str) -> Optional[AvailabilitySnapshot]:
        """Cached snapshot without loading, None on a miss or when Redis is down."""
        try:
            return self._read(product_id)
        except CacheUnavailable as e:
            logger.warning(f"Availability cache unavailable: {e}")
            return None

    def invalidate(self, product_id: str) -> None:
        """Delete the snapshot so the next read goes to the store."""
        self.invalidate_many([product_id])

    def invalidate_many(self, product_ids: Iterable[str]) -> None:
        keys = [self._key(product_id) for product_id in product_ids]
        if not keys:
            return
        try:
            self.redis.delete(*keys)
            logger.debug(f"Invalidated availability for {len(keys)} product(s)")
        except redis.RedisError as e:
            # The TTL bounds how long these entries can stay stale
            logger.warning(f"Could not invalidate availability keys {keys}: {e}")

    def _key(self, product_id: str) -> str:
        return f"{self.KEY_PREFIX}{product_id}"

    def _read(self, product_id: str) -> Optional[AvailabilitySnapshot]:
        try:
            raw = self.redis.get(self._key(product_id))
        except redis.RedisError as e:
            raise CacheUnavailable(str(e)) from e

        if raw is None:
            return None

        try:
            return AvailabilitySnapshot.model_validate_json(raw)
        except ValidationError:
            logger.warning(f"Discarding unreadable availability entry for {product_id}")
            return None

    def _write(self, snapshot: AvailabilitySnapshot) -> None:
        try:
            self.redis.set(self._key(snapshot.product_id), snapshot.model_dump_json(), ex=self.ttl_seconds)
        except redis.RedisError as e:
            raise CacheUnavailable(str(e)) from e
