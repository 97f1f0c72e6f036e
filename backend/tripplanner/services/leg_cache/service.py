"""Route leg cache.

This module provides an abstract leg cache interface plus Redis and
in-memory implementations. A leg is stored once per ordered
``(from_stop_id, to_stop_id)`` pair and is never overwritten.

Concurrent writers are handled without locks: ``insert_leg_if_absent``
is atomic in the backing store and reports ``Conflict`` when another
writer got there first, after which the caller re-reads the stored leg.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Union

import redis.asyncio as redis

from tripplanner.models import RouteLeg

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Inserted:
    """The leg was written by this caller."""
    leg: RouteLeg


@dataclass(frozen=True)
class Conflict:
    """A leg for the same ordered pair already existed; nothing was written."""


InsertResult = Union[Inserted, Conflict]


class LegCacheService(ABC):
    """Abstract base class for leg caches."""

    @abstractmethod
    async def find_leg(self, from_stop_id: int, to_stop_id: int) -> RouteLeg | None:
        """Look up the leg for an ordered pair of stops.

        Args:
            from_stop_id: Origin stop identifier.
            to_stop_id: Destination stop identifier.

        Returns:
            The cached leg if present, None otherwise. The reverse pair is
            never returned.
        """
        pass

    @abstractmethod
    async def insert_leg_if_absent(self, leg: RouteLeg) -> InsertResult:
        """Store a leg unless one already exists for its ordered pair.

        Args:
            leg: The freshly computed leg.

        Returns:
            ``Inserted(leg)`` if this call stored it, ``Conflict()`` if a leg
            for the same pair was already present.
        """
        pass

    @abstractmethod
    async def delete_legs_for_stop(self, stop_id: int) -> int:
        """Remove every leg that starts or ends at a stop.

        Args:
            stop_id: The stop (attraction) being removed.

        Returns:
            Number of legs deleted.
        """
        pass

    async def close(self) -> None:
        pass

    @staticmethod
    def build_leg_key(from_stop_id: int, to_stop_id: int) -> str:
        """Generate the cache key for an ordered pair of stops.

        Example:
            >>> LegCacheService.build_leg_key(12, 7)
            'route_leg:12:7'
        """
        return f"route_leg:{from_stop_id}:{to_stop_id}"


class RedisLegCacheService(LegCacheService):
    """Redis-backed leg cache.

    Legs are stored as JSON without expiry. ``SET ... NX`` provides the
    atomic insert-if-absent.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        client: redis.Redis | None = None,
    ) -> None:
        """Initialize the Redis leg cache.

        Args:
            redis_url: Redis connection URL. Defaults to localhost:6379.
            client: Pre-built async client, mainly for tests.
        """
        self._redis_url = redis_url
        self._client = client

    async def connect(self) -> None:
        if self._client is None:
            self._client = redis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
            )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _ensure_connected(self) -> redis.Redis:
        if self._client is None:
            await self.connect()
        return self._client  # type: ignore

    async def find_leg(self, from_stop_id: int, to_stop_id: int) -> RouteLeg | None:
        client = await self._ensure_connected()
        raw = await client.get(self.build_leg_key(from_stop_id, to_stop_id))
        if raw is None:
            return None
        return RouteLeg.model_validate_json(raw)

    async def insert_leg_if_absent(self, leg: RouteLeg) -> InsertResult:
        client = await self._ensure_connected()
        key = self.build_leg_key(leg.from_stop_id, leg.to_stop_id)
        stored = await client.set(key, leg.model_dump_json(), nx=True)
        if not stored:
            logger.info(f"[LEGS] Insert conflict on {key}")
            return Conflict()
        return Inserted(leg)

    async def delete_legs_for_stop(self, stop_id: int) -> int:
        client = await self._ensure_connected()
        deleted_count = 0

        # SCAN rather than KEYS so large caches don't block the server
        for pattern in (f"route_leg:{stop_id}:*", f"route_leg:*:{stop_id}"):
            cursor = 0
            while True:
                cursor, keys = await client.scan(cursor=cursor, match=pattern, count=100)
                if keys:
                    deleted_count += await client.delete(*keys)
                if cursor == 0:
                    break

        logger.info(f"[LEGS] Purged {deleted_count} legs for stop {stop_id}")
        return deleted_count


class InMemoryLegCacheService(LegCacheService):
    """Process-local leg cache for development and tests.

    All access happens on one event loop and no method awaits between the
    membership check and the write, so inserts are atomic.
    """

    def __init__(self) -> None:
        self._legs: dict[tuple[int, int], RouteLeg] = {}

    async def find_leg(self, from_stop_id: int, to_stop_id: int) -> RouteLeg | None:
        return self._legs.get((from_stop_id, to_stop_id))

    async def insert_leg_if_absent(self, leg: RouteLeg) -> InsertResult:
        if leg.key in self._legs:
            return Conflict()
        self._legs[leg.key] = leg
        return Inserted(leg)

    async def delete_legs_for_stop(self, stop_id: int) -> int:
        doomed = [key for key in self._legs if stop_id in key]
        for key in doomed:
            del self._legs[key]
        return len(doomed)

    def __len__(self) -> int:
        return len(self._legs)
