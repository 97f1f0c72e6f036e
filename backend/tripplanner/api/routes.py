"""API routes for the routing backend.

- POST /routes/build: walking route for an ordered list of stops
- DELETE /routes/legs/{stop_id}: drop cached legs touching a removed stop

Services are created once in the application lifespan and read from
``app.state`` through FastAPI dependencies.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Path, Request, Response
from pydantic import BaseModel, Field

from tripplanner.models import (
    AppError,
    ErrorCode,
    RecoveryOption,
    Route,
    RouteBuildError,
    Stop,
)
from tripplanner.services import LegCacheService, RouteBuilderService

logger = logging.getLogger(__name__)

router = APIRouter()


def get_route_builder(request: Request) -> RouteBuilderService:
    return request.app.state.route_builder


def get_leg_cache(request: Request) -> LegCacheService:
    return request.app.state.leg_cache


# Request/Response models
class BuildRouteRequest(BaseModel):
    """Ordered stops for one itinerary day."""
    points: list[Stop] = Field(..., description="Stops in visit order")


class BuildRouteResponse(BaseModel):
    """Response model for route building."""
    success: bool
    route: Optional[Route] = None
    error: Optional[AppError] = None


class PurgeLegsResponse(BaseModel):
    success: bool
    deleted: int = 0
    error: Optional[AppError] = None


@router.post("/routes/build", response_model=BuildRouteResponse)
async def build_route(
    request: BuildRouteRequest,
    response: Response,
    builder: RouteBuilderService = Depends(get_route_builder),
) -> BuildRouteResponse:
    """Build a walking route through the given stops.

    Legs already computed for an ordered pair of stops come from the cache;
    the rest are fetched from OpenRouteService and cached.
    """
    try:
        route = await builder.build_route(request.points)
        return BuildRouteResponse(success=True, route=route)

    except RouteBuildError as e:
        logger.info(f"[ROUTE] Build failed ({e.code.value}): {e}")
        response.status_code = e.http_status
        return BuildRouteResponse(success=False, error=e.to_app_error())

    except Exception as e:
        logger.exception("Unhandled error")
        response.status_code = 500
        return BuildRouteResponse(
            success=False,
            error=AppError(
                code=ErrorCode.API_ERROR,
                message=str(e),
                user_message="Something went wrong. Please try again later.",
                recovery_options=[RecoveryOption(label="Retry", action="retry")],
            ),
        )


@router.delete("/routes/legs/{stop_id}", response_model=PurgeLegsResponse)
async def purge_legs(
    response: Response,
    stop_id: int = Path(..., gt=0),
    leg_cache: LegCacheService = Depends(get_leg_cache),
) -> PurgeLegsResponse:
    """Forget every cached leg that starts or ends at a stop.

    Called when an attraction is deleted so stale legs don't linger.
    """
    try:
        deleted = await leg_cache.delete_legs_for_stop(stop_id)
        return PurgeLegsResponse(success=True, deleted=deleted)
    except Exception as e:
        logger.exception("Unhandled error")
        response.status_code = 500
        return PurgeLegsResponse(
            success=False,
            error=AppError(
                code=ErrorCode.API_ERROR,
                message=str(e),
                user_message="Failed to clear cached routes.",
            ),
        )
