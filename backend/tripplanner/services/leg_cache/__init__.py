"""Leg cache service module.

Stores computed walking legs per ordered stop pair in Redis, with an
in-memory fallback for local development.
"""

from .service import (
    Conflict,
    InMemoryLegCacheService,
    Inserted,
    InsertResult,
    LegCacheService,
    RedisLegCacheService,
)

__all__ = [
    "Conflict",
    "InMemoryLegCacheService",
    "Inserted",
    "InsertResult",
    "LegCacheService",
    "RedisLegCacheService",
]
