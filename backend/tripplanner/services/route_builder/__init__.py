"""Route builder service module.

Assembles walking routes for an ordered list of itinerary stops.
"""

from .service import (
    MAX_STOPS,
    MIN_STOPS,
    RouteBuilderService,
    assemble_route,
    validate_stops,
)

__all__ = [
    "MAX_STOPS",
    "MIN_STOPS",
    "RouteBuilderService",
    "assemble_route",
    "validate_stops",
]
