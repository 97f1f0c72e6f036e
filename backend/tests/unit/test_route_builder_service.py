"""Unit tests for the route builder.

The routing provider is faked; every fake leg is a three-point line from
the origin stop through a midpoint to the destination stop.
"""

import asyncio

import httpx
import pytest

from tripplanner.models import (
    InternalError,
    LineString,
    RouteLeg,
    RouteValidationError,
    Stop,
    UpstreamError,
    UpstreamTimeoutError,
)
from tripplanner.services.leg_cache import Conflict, InMemoryLegCacheService, LegCacheService
from tripplanner.services.route_builder import (
    MAX_STOPS,
    RouteBuilderService,
    assemble_route,
    validate_stops,
)
from tripplanner.services.routing_provider import (
    OpenRouteServiceProvider,
    ProviderRoute,
    RoutingProviderService,
)
from tripplanner.utils.polyline import encode_polyline


def make_stop(stop_id: int) -> Stop:
    return Stop(id=stop_id, lat=48.85 + stop_id * 0.001, lng=2.29 + stop_id * 0.002)


def leg_distance(from_id: int, to_id: int) -> float:
    return float(from_id * 100 + to_id)


class FakeProvider(RoutingProviderService):
    """Deterministic provider that records every call."""

    def __init__(self, delays: dict[tuple[int, int], float] | None = None, errors: dict | None = None) -> None:
        self.calls: list[tuple[int, int]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._delays = delays or {}
        self._errors = errors or {}

    async def fetch_walking_route(self, origin: Stop, destination: Stop) -> ProviderRoute:
        pair = (origin.id, destination.id)
        self.calls.append(pair)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self._delays.get(pair, 0))
        finally:
            self.in_flight -= 1
        if pair in self._errors:
            raise self._errors[pair]
        midpoint = ((origin.lng + destination.lng) / 2, (origin.lat + destination.lat) / 2)
        geometry = encode_polyline([(origin.lng, origin.lat), midpoint, (destination.lng, destination.lat)])
        distance = leg_distance(*pair)
        return ProviderRoute(geometry=geometry, distance_meters=distance, duration_seconds=distance / 2)


class BrokenGeometryProvider(RoutingProviderService):
    async def fetch_walking_route(self, origin: Stop, destination: Stop) -> ProviderRoute:
        return ProviderRoute(geometry="_p~iF~ps|U_", distance_meters=10.0, duration_seconds=10.0)


class StaticProvider(RoutingProviderService):
    """Returns the same provider payload for every pair."""

    def __init__(self, geometry: str, distance: float = 10.0, duration: float = 10.0) -> None:
        self._route = ProviderRoute(geometry=geometry, distance_meters=distance, duration_seconds=duration)

    async def fetch_walking_route(self, origin: Stop, destination: Stop) -> ProviderRoute:
        return self._route


class LosingRaceCache(LegCacheService):
    """Always loses the insert race and never finds the winner's row."""

    async def find_leg(self, from_stop_id: int, to_stop_id: int) -> RouteLeg | None:
        return None

    async def insert_leg_if_absent(self, leg: RouteLeg) -> Conflict:
        return Conflict()

    async def delete_legs_for_stop(self, stop_id: int) -> int:
        return 0


class ExplodingCache(InMemoryLegCacheService):
    async def find_leg(self, from_stop_id: int, to_stop_id: int) -> RouteLeg | None:
        raise ConnectionError("cache unreachable")


class TestValidateStops:
    """Tests for stop sequence validation."""

    def test_one_stop_rejected(self) -> None:
        with pytest.raises(RouteValidationError, match="At least 2"):
            validate_stops([make_stop(1)])

    def test_empty_rejected(self) -> None:
        with pytest.raises(RouteValidationError):
            validate_stops([])

    def test_too_many_stops_rejected(self) -> None:
        with pytest.raises(RouteValidationError, match="Maximum 25"):
            validate_stops([make_stop(i) for i in range(1, MAX_STOPS + 2)])

    def test_consecutive_duplicate_rejected(self) -> None:
        with pytest.raises(RouteValidationError, match="Consecutive"):
            validate_stops([make_stop(1), make_stop(1), make_stop(2)])

    def test_revisit_allowed(self) -> None:
        validate_stops([make_stop(1), make_stop(2), make_stop(1)])

    def test_out_of_range_latitude_rejected(self) -> None:
        bad = Stop.model_construct(id=2, lat=95.0, lng=2.3)
        with pytest.raises(RouteValidationError, match="latitude"):
            validate_stops([make_stop(1), bad])

    def test_out_of_range_longitude_rejected(self) -> None:
        bad = Stop.model_construct(id=2, lat=48.0, lng=-181.0)
        with pytest.raises(RouteValidationError, match="longitude"):
            validate_stops([make_stop(1), bad])


class TestAssembleRoute:
    """Tests for merging legs into a route."""

    def _leg(self, from_id: int, to_id: int, coords: list, distance: float, duration: float) -> RouteLeg:
        return RouteLeg(
            from_stop_id=from_id,
            to_stop_id=to_id,
            geometry=LineString(coordinates=coords),
            distance_meters=distance,
            duration_seconds=duration,
        )

    def test_drops_shared_boundary_points(self) -> None:
        legs = [
            self._leg(1, 2, [(0.0, 0.0), (0.5, 0.5), (1.0, 1.0)], 100.0, 60.0),
            self._leg(2, 3, [(1.0, 1.0), (2.0, 2.0)], 200.0, 120.0),
        ]
        route = assemble_route(legs)
        assert route.coordinates == [(0.0, 0.0), (0.5, 0.5), (1.0, 1.0), (2.0, 2.0)]
        assert route.geojson.geometry.coordinates == route.coordinates

    def test_totals_and_units(self) -> None:
        legs = [
            self._leg(1, 2, [(0.0, 0.0), (1.0, 1.0)], 1500.0, 600.0),
            self._leg(2, 3, [(1.0, 1.0), (2.0, 2.0)], 500.0, 300.0),
        ]
        route = assemble_route(legs)
        assert route.total_distance_meters == 2000.0
        assert route.total_duration_seconds == 900.0
        assert route.total_km == 2.0
        assert route.total_duration_minutes == 15.0
        assert route.geojson.properties == {
            "totalDistanceMeters": 2000.0,
            "totalDurationSeconds": 900.0,
            "legCount": 2,
        }


class TestRouteBuilderService:
    """Tests for build_route."""

    def setup_method(self) -> None:
        self.cache = InMemoryLegCacheService()
        self.provider = FakeProvider()
        self.builder = RouteBuilderService(leg_cache=self.cache, provider=self.provider)

    @pytest.mark.asyncio
    async def test_builds_route_for_three_stops(self) -> None:
        stops = [make_stop(1), make_stop(2), make_stop(3)]

        route = await self.builder.build_route(stops)

        assert [(leg.from_stop_id, leg.to_stop_id) for leg in route.legs] == [(1, 2), (2, 3)]
        assert route.coordinates[0] == pytest.approx((stops[0].lng, stops[0].lat), abs=1e-5)
        assert route.coordinates[-1] == pytest.approx((stops[2].lng, stops[2].lat), abs=1e-5)

    @pytest.mark.asyncio
    async def test_second_build_uses_cache(self) -> None:
        stops = [make_stop(1), make_stop(2), make_stop(3), make_stop(4)]

        await self.builder.build_route(stops)
        await self.builder.build_route(stops)

        assert self.provider.calls == [(1, 2), (2, 3), (3, 4)]

    @pytest.mark.asyncio
    async def test_reverse_direction_is_fetched_separately(self) -> None:
        a, b = make_stop(1), make_stop(2)

        await self.builder.build_route([a, b])
        route = await self.builder.build_route([b, a])

        assert self.provider.calls == [(1, 2), (2, 1)]
        assert route.legs[0].from_stop_id == 2
        assert route.legs[0].distance_meters == leg_distance(2, 1)
        assert len(self.cache) == 2

    @pytest.mark.asyncio
    async def test_legs_keep_stop_order_when_completing_out_of_order(self) -> None:
        provider = FakeProvider(delays={(1, 2): 0.05, (2, 3): 0.02, (3, 4): 0.0})
        builder = RouteBuilderService(leg_cache=self.cache, provider=provider)

        route = await builder.build_route([make_stop(1), make_stop(2), make_stop(3), make_stop(4)])

        assert [(leg.from_stop_id, leg.to_stop_id) for leg in route.legs] == [(1, 2), (2, 3), (3, 4)]

    @pytest.mark.asyncio
    async def test_pairs_fetched_concurrently(self) -> None:
        delays = {(i, i + 1): 0.01 for i in range(1, 10)}
        provider = FakeProvider(delays=delays)
        builder = RouteBuilderService(leg_cache=self.cache, provider=provider)

        await builder.build_route([make_stop(i) for i in range(1, 11)])

        assert provider.max_in_flight == 9
        assert provider.in_flight == 0

    @pytest.mark.asyncio
    async def test_merged_geometry_length(self) -> None:
        route = await self.builder.build_route([make_stop(i) for i in range(1, 5)])

        total_points = sum(len(leg.geometry.coordinates) for leg in route.legs)
        assert len(route.coordinates) == total_points - (len(route.legs) - 1)
        assert len(route.coordinates) == 7

    @pytest.mark.asyncio
    async def test_aggregates(self) -> None:
        route = await self.builder.build_route([make_stop(i) for i in range(1, 5)])

        assert route.total_distance_meters == sum(leg.distance_meters for leg in route.legs)
        assert route.total_duration_seconds == sum(leg.duration_seconds for leg in route.legs)
        assert route.total_km == route.total_distance_meters / 1000
        assert route.total_duration_minutes == route.total_duration_seconds / 60
        assert route.geojson.properties["legCount"] == 3

    @pytest.mark.asyncio
    async def test_two_stops_minimum(self) -> None:
        route = await self.builder.build_route([make_stop(1), make_stop(2)])
        assert len(route.legs) == 1

    @pytest.mark.asyncio
    async def test_twenty_five_stops_maximum(self) -> None:
        route = await self.builder.build_route([make_stop(i) for i in range(1, 26)])
        assert len(route.legs) == 24

    @pytest.mark.asyncio
    async def test_twenty_six_stops_rejected_before_any_io(self) -> None:
        with pytest.raises(RouteValidationError):
            await self.builder.build_route([make_stop(i) for i in range(1, 27)])
        assert self.provider.calls == []

    @pytest.mark.asyncio
    async def test_single_stop_rejected(self) -> None:
        with pytest.raises(RouteValidationError):
            await self.builder.build_route([make_stop(1)])

    @pytest.mark.asyncio
    async def test_consecutive_duplicates_rejected(self) -> None:
        with pytest.raises(RouteValidationError):
            await self.builder.build_route([make_stop(1), make_stop(1), make_stop(2)])
        assert self.provider.calls == []

    @pytest.mark.asyncio
    async def test_revisiting_a_stop_succeeds(self) -> None:
        route = await self.builder.build_route([make_stop(1), make_stop(2), make_stop(1)])

        assert [(leg.from_stop_id, leg.to_stop_id) for leg in route.legs] == [(1, 2), (2, 1)]

    @pytest.mark.asyncio
    async def test_cached_leg_served_as_is(self) -> None:
        cached = RouteLeg(
            from_stop_id=1,
            to_stop_id=2,
            geometry=LineString(coordinates=[(9.0, 9.0), (9.5, 9.5)]),
            distance_meters=42.0,
            duration_seconds=7.0,
        )
        await self.cache.insert_leg_if_absent(cached)

        route = await self.builder.build_route([make_stop(1), make_stop(2)])

        assert route.legs[0] == cached
        assert self.provider.calls == []

    @pytest.mark.asyncio
    async def test_concurrent_builds_share_one_stored_leg(self) -> None:
        provider = FakeProvider(delays={(1, 2): 0.02})
        builder = RouteBuilderService(leg_cache=self.cache, provider=provider)
        stops = [make_stop(1), make_stop(2)]

        first, second = await asyncio.gather(builder.build_route(stops), builder.build_route(stops))

        stored = await self.cache.find_leg(1, 2)
        assert len(self.cache) == 1
        assert provider.calls == [(1, 2), (1, 2)]
        assert first.legs[0] == stored
        assert second.legs[0] == stored

    @pytest.mark.asyncio
    async def test_lost_race_without_stored_row_is_internal_error(self) -> None:
        builder = RouteBuilderService(leg_cache=LosingRaceCache(), provider=self.provider)

        with pytest.raises(InternalError, match="from 1 to 2"):
            await builder.build_route([make_stop(1), make_stop(2)])

    @pytest.mark.asyncio
    async def test_one_failing_leg_fails_whole_route(self) -> None:
        provider = FakeProvider(errors={(2, 3): UpstreamError("OpenRouteService API error: 500", status=500)})
        builder = RouteBuilderService(leg_cache=self.cache, provider=provider)

        with pytest.raises(UpstreamError):
            await builder.build_route([make_stop(1), make_stop(2), make_stop(3)])

    @pytest.mark.asyncio
    async def test_timeout_propagates(self) -> None:
        provider = FakeProvider(errors={(1, 2): UpstreamTimeoutError("timed out")})
        builder = RouteBuilderService(leg_cache=self.cache, provider=provider)

        with pytest.raises(UpstreamTimeoutError):
            await builder.build_route([make_stop(1), make_stop(2)])

    @pytest.mark.asyncio
    async def test_undecodable_geometry_is_upstream_error(self) -> None:
        builder = RouteBuilderService(leg_cache=self.cache, provider=BrokenGeometryProvider())

        with pytest.raises(UpstreamError, match="undecodable geometry"):
            await builder.build_route([make_stop(1), make_stop(2)])
        assert len(self.cache) == 0

    @pytest.mark.asyncio
    async def test_single_point_geometry_is_upstream_error(self) -> None:
        builder = RouteBuilderService(leg_cache=self.cache, provider=StaticProvider("??"))

        with pytest.raises(UpstreamError, match="missing route data"):
            await builder.build_route([make_stop(1), make_stop(2)])
        assert len(self.cache) == 0

    @pytest.mark.asyncio
    async def test_empty_geometry_is_upstream_error(self) -> None:
        builder = RouteBuilderService(leg_cache=self.cache, provider=StaticProvider(""))

        with pytest.raises(UpstreamError, match="missing route data"):
            await builder.build_route([make_stop(1), make_stop(2)])
        assert len(self.cache) == 0

    @pytest.mark.asyncio
    async def test_negative_distance_is_upstream_error(self) -> None:
        provider = StaticProvider("_p~iF~ps|U_ulLnnqC", distance=-5.0, duration=3.0)
        builder = RouteBuilderService(leg_cache=self.cache, provider=provider)

        with pytest.raises(UpstreamError, match="unusable leg data"):
            await builder.build_route([make_stop(1), make_stop(2)])
        assert len(self.cache) == 0

    @pytest.mark.asyncio
    async def test_unexpected_cache_failure_is_internal_error(self) -> None:
        builder = RouteBuilderService(leg_cache=ExplodingCache(), provider=self.provider)

        with pytest.raises(InternalError, match="attraction 1 to 2"):
            await builder.build_route([make_stop(1), make_stop(2)])


class TestRouteBuilderWithOpenRouteService:
    """Builder and real provider together, over a mocked HTTP transport."""

    @pytest.mark.asyncio
    async def test_rate_limit_recovery_with_backoff(self) -> None:
        responses = [
            httpx.Response(429, json={"error": {"code": 429, "message": "Rate limit exceeded"}}),
            httpx.Response(429, json={"error": {"code": 429, "message": "Rate limit exceeded"}}),
            httpx.Response(200, json={
                "routes": [{
                    "geometry": "_p~iF~ps|U_ulLnnqC_mqNvxq`@",
                    "segments": [{"distance": 812.3, "duration": 584.9}],
                }]
            }),
        ]
        calls: list[httpx.Request] = []
        delays: list[float] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return responses.pop(0)

        async def record_sleep(delay: float) -> None:
            delays.append(delay)

        provider = OpenRouteServiceProvider(
            api_key="test-key",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            sleep=record_sleep,
        )
        builder = RouteBuilderService(leg_cache=InMemoryLegCacheService(), provider=provider)

        route = await builder.build_route([make_stop(1), make_stop(2)])

        assert len(calls) == 3
        assert delays == [1.0, 2.0]
        assert route.total_distance_meters == 812.3
        assert route.coordinates[2] == pytest.approx((-126.453, 43.252), abs=1e-5)

    @pytest.mark.asyncio
    async def test_negative_segment_distance_rejected_without_caching(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={
                "routes": [{
                    "geometry": "_p~iF~ps|U_ulLnnqC",
                    "segments": [{"distance": -5.0, "duration": 3.0}],
                }]
            })

        provider = OpenRouteServiceProvider(
            api_key="test-key",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        cache = InMemoryLegCacheService()
        builder = RouteBuilderService(leg_cache=cache, provider=provider)

        with pytest.raises(UpstreamError, match="bad segment distance"):
            await builder.build_route([make_stop(1), make_stop(2)])
        assert len(cache) == 0
