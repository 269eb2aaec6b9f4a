"""
FastAPI dependencies.

The lifespan in main.py fills the module-level handles below; tests replace the
dependency functions through ``app.dependency_overrides``.
"""

from typing import Iterator, Optional

import redis
from sqlalchemy.orm import Session, sessionmaker

from shared.database import session_scope

from inventory_service.cache import AvailabilityCache
from inventory_service.config import settings
from inventory_service.publisher import InventoryEventPublisher

# Will be injected by main.py
session_factory: sessionmaker = None
redis_client: Optional[redis.Redis] = None
publisher: InventoryEventPublisher = InventoryEventPublisher(None)


def get_db() -> Iterator[Session]:
    yield from session_scope(session_factory)


def get_cache() -> Optional[AvailabilityCache]:
    if redis_client is None:
        return None
    return AvailabilityCache(redis_client, ttl_seconds=settings.availability_cache_ttl_seconds)


def get_publisher() -> InventoryEventPublisher:
    return publisher


def get_reservation_timeout() -> float:
    return settings.reservation_timeout_seconds
