"""Routing provider service module.

OpenRouteService integration for pedestrian directions between two stops.
"""

from .service import (
    OpenRouteServiceProvider,
    ProviderRoute,
    RetryPolicy,
    RoutingProviderService,
)

__all__ = [
    "OpenRouteServiceProvider",
    "ProviderRoute",
    "RetryPolicy",
    "RoutingProviderService",
]
