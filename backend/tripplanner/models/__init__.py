"""Data models for the routing backend."""

from .core import LineString, LngLat, Route, RouteFeature, RouteLeg, Stop
from .errors import (
    AppError,
    ErrorCode,
    InternalError,
    RecoveryOption,
    RouteBuildError,
    RouteValidationError,
    UpstreamError,
    UpstreamTimeoutError,
)

__all__ = [
    "LineString",
    "LngLat",
    "Route",
    "RouteFeature",
    "RouteLeg",
    "Stop",
    "AppError",
    "ErrorCode",
    "InternalError",
    "RecoveryOption",
    "RouteBuildError",
    "RouteValidationError",
    "UpstreamError",
    "UpstreamTimeoutError",
]
