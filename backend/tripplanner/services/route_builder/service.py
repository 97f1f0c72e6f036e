"""Route builder.

Turns an ordered list of itinerary stops into one walking route:

1. Validate the stop sequence (2-25 stops, no consecutive repeats).
2. For every consecutive pair, concurrently: read the cached leg, or
   fetch it from the routing provider, decode its polyline and store it.
3. Stitch the legs together in stop order and total up distance/duration.

Any failing pair fails the whole build; a route with a gap is useless
to the map.
"""

import asyncio
import logging
from typing import Sequence

from pydantic import ValidationError

from tripplanner.models import (
    InternalError,
    LineString,
    LngLat,
    Route,
    RouteBuildError,
    RouteFeature,
    RouteLeg,
    RouteValidationError,
    Stop,
    UpstreamError,
)
from tripplanner.services.leg_cache import Inserted, LegCacheService
from tripplanner.services.routing_provider import RoutingProviderService
from tripplanner.utils.polyline import decode_polyline

logger = logging.getLogger(__name__)

MIN_STOPS = 2
MAX_STOPS = 25


def validate_stops(stops: Sequence[Stop]) -> None:
    """Check a stop sequence before any I/O happens.

    Raises:
        RouteValidationError: Too few or too many stops, the same stop twice
            in a row, or coordinates outside valid bounds.
    """
    if len(stops) < MIN_STOPS:
        raise RouteValidationError(f"At least {MIN_STOPS} points required")
    if len(stops) > MAX_STOPS:
        raise RouteValidationError(f"Maximum {MAX_STOPS} points allowed")

    for i, stop in enumerate(stops):
        if stop.id <= 0:
            raise RouteValidationError(f"Point {i} has invalid id {stop.id}")
        if not -90 <= stop.lat <= 90:
            raise RouteValidationError(f"Point {i} has latitude {stop.lat} out of range")
        if not -180 <= stop.lng <= 180:
            raise RouteValidationError(f"Point {i} has longitude {stop.lng} out of range")
        if i > 0 and stop.id == stops[i - 1].id:
            raise RouteValidationError(
                "Consecutive points cannot have the same attraction ID"
                f" (id {stop.id} at positions {i - 1} and {i})"
            )


def assemble_route(legs: Sequence[RouteLeg]) -> Route:
    """Merge ordered legs into a single route.

    Each leg after the first starts where the previous one ended, so its
    first coordinate is dropped to keep the merged line free of duplicate
    points.
    """
    coordinates: list[LngLat] = []
    total_distance = 0.0
    total_duration = 0.0

    for i, leg in enumerate(legs):
        points = leg.geometry.coordinates
        coordinates.extend(points if i == 0 else points[1:])
        total_distance += leg.distance_meters
        total_duration += leg.duration_seconds

    return Route(
        legs=list(legs),
        coordinates=coordinates,
        total_distance_meters=total_distance,
        total_duration_seconds=total_duration,
        total_km=total_distance / 1000,
        total_duration_minutes=total_duration / 60,
        geojson=RouteFeature(
            geometry=LineString(coordinates=coordinates),
            properties={
                "totalDistanceMeters": total_distance,
                "totalDurationSeconds": total_duration,
                "legCount": len(legs),
            },
        ),
    )


class RouteBuilderService:
    """Builds walking routes from cached or freshly fetched legs."""

    def __init__(self, leg_cache: LegCacheService, provider: RoutingProviderService) -> None:
        self._leg_cache = leg_cache
        self._provider = provider

    async def build_route(self, stops: Sequence[Stop]) -> Route:
        validate_stops(stops)

        pairs = list(zip(stops, stops[1:]))
        logger.info(f"[ROUTE] Building route: {len(stops)} stops, {len(pairs)} legs")

        # gather keeps results in argument order, whatever order they finish in
        legs = await asyncio.gather(
            *[self._resolve_leg(origin, destination) for origin, destination in pairs]
        )

        route = assemble_route(legs)
        logger.info(
            f"[ROUTE] Route ready: {route.total_km:.2f} km, "
            f"{route.total_duration_minutes:.0f} min, {len(route.coordinates)} points"
        )
        return route

    async def _resolve_leg(self, origin: Stop, destination: Stop) -> RouteLeg:
        try:
            return await self._get_or_create_leg(origin, destination)
        except RouteBuildError:
            raise
        except Exception as e:
            logger.exception(f"[ROUTE] Unexpected failure for leg {origin.id} -> {destination.id}")
            raise InternalError(
                f"Failed to compute route from attraction {origin.id} to {destination.id}: {e}"
            ) from e

    async def _get_or_create_leg(self, origin: Stop, destination: Stop) -> RouteLeg:
        cached = await self._leg_cache.find_leg(origin.id, destination.id)
        if cached is not None:
            logger.info(f"[LEGS] Cache hit {origin.id} -> {destination.id}")
            return cached

        logger.info(f"[LEGS] Cache miss {origin.id} -> {destination.id}, asking provider")
        provider_route = await self._provider.fetch_walking_route(origin, destination)

        try:
            coordinates = decode_polyline(provider_route.geometry)
        except ValueError as e:
            raise UpstreamError(
                "Invalid response from OpenRouteService: undecodable geometry", detail=str(e)
            ) from e

        # at least both endpoints
        if len(coordinates) < 2:
            raise UpstreamError(
                "Invalid response from OpenRouteService: missing route data",
                detail=f"geometry has {len(coordinates)} point(s)",
            )

        try:
            leg = RouteLeg(
                from_stop_id=origin.id,
                to_stop_id=destination.id,
                geometry=LineString(coordinates=coordinates),
                distance_meters=provider_route.distance_meters,
                duration_seconds=provider_route.duration_seconds,
            )
        except ValidationError as e:
            raise UpstreamError(
                "Invalid response from OpenRouteService: unusable leg data", detail=str(e)
            ) from e

        result = await self._leg_cache.insert_leg_if_absent(leg)
        if isinstance(result, Inserted):
            return result.leg

        # Another request stored this pair first; use its row
        stored = await self._leg_cache.find_leg(origin.id, destination.id)
        if stored is None:
            raise InternalError(
                f"Failed to retrieve route leg from {origin.id} to {destination.id}"
            )
        return stored
