"""Routing backend services.

Service layer components:
- Leg cache: Redis-backed per-pair leg storage with an in-memory fallback
- Routing provider: OpenRouteService walking directions with retry/backoff
- Route builder: validation, concurrent leg resolution and route assembly
"""

from .leg_cache import (
    Conflict,
    InMemoryLegCacheService,
    Inserted,
    InsertResult,
    LegCacheService,
    RedisLegCacheService,
)
from .routing_provider import (
    OpenRouteServiceProvider,
    ProviderRoute,
    RetryPolicy,
    RoutingProviderService,
)
from .route_builder import RouteBuilderService

__all__ = [
    # Leg cache
    "Conflict",
    "InMemoryLegCacheService",
    "Inserted",
    "InsertResult",
    "LegCacheService",
    "RedisLegCacheService",
    # Routing provider
    "OpenRouteServiceProvider",
    "ProviderRoute",
    "RetryPolicy",
    "RoutingProviderService",
    # Route builder
    "RouteBuilderService",
]
