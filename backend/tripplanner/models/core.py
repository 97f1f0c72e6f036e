"""Core data models for the routing backend.

Pydantic models for itinerary stops, cached route legs and assembled
walking routes. Coordinates inside geometries are ``(lng, lat)`` pairs,
matching GeoJSON and the routing provider.
"""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

# (lng, lat)
LngLat = tuple[float, float]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Stop(BaseModel):
    """An itinerary stop (attraction) with its location.

    Latitude must be between -90 and 90 degrees.
    Longitude must be between -180 and 180 degrees.
    """

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., gt=0, description="Attraction identifier")
    lat: float = Field(..., ge=-90, le=90, description="Latitude in degrees")
    lng: float = Field(..., ge=-180, le=180, description="Longitude in degrees")


class LineString(BaseModel):
    """GeoJSON LineString geometry."""

    type: Literal["LineString"] = "LineString"
    coordinates: list[LngLat] = Field(default_factory=list)


class RouteLeg(BaseModel):
    """A directed walking leg between two stops.

    Legs are cached per ordered ``(from_stop_id, to_stop_id)`` pair, so the
    leg A -> B and the leg B -> A are separate records. Once stored a leg is
    never modified.
    """

    from_stop_id: int = Field(..., gt=0, description="Origin stop identifier")
    to_stop_id: int = Field(..., gt=0, description="Destination stop identifier")
    geometry: LineString = Field(..., description="Decoded leg geometry")
    distance_meters: float = Field(..., ge=0, description="Distance in meters")
    duration_seconds: float = Field(..., ge=0, description="Duration in seconds")
    created_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _reject_self_loop(self) -> "RouteLeg":
        if self.from_stop_id == self.to_stop_id:
            raise ValueError("a route leg cannot start and end at the same stop")
        return self

    @property
    def key(self) -> tuple[int, int]:
        return (self.from_stop_id, self.to_stop_id)


class RouteFeature(BaseModel):
    """GeoJSON Feature wrapping the merged route line."""

    type: Literal["Feature"] = "Feature"
    geometry: LineString
    properties: dict = Field(default_factory=dict)


class Route(BaseModel):
    """A walking route assembled from consecutive legs.

    Built per request and never stored. ``coordinates`` holds the merged
    line with the shared point at each leg boundary kept only once.
    """

    legs: list[RouteLeg] = Field(..., min_length=1, description="Legs in visit order")
    coordinates: list[LngLat] = Field(default_factory=list)
    total_distance_meters: float = Field(..., ge=0)
    total_duration_seconds: float = Field(..., ge=0)
    total_km: float = Field(..., ge=0)
    total_duration_minutes: float = Field(..., ge=0)
    geojson: RouteFeature
