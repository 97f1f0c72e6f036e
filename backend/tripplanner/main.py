"""Trip Planner routing API.

Main entry point for the backend API server.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tripplanner.api import router
from tripplanner.config import Settings
from tripplanner.models import ErrorCode
from tripplanner.services import (
    InMemoryLegCacheService,
    LegCacheService,
    OpenRouteServiceProvider,
    RedisLegCacheService,
    RetryPolicy,
    RouteBuilderService,
)

settings = Settings.from_env()

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger(__name__)


def create_leg_cache(settings: Settings) -> LegCacheService:
    if settings.redis_url:
        logger.info("[LEGS] Using Redis leg cache")
        return RedisLegCacheService(redis_url=settings.redis_url)
    logger.info("[LEGS] REDIS_URL not set, using in-memory leg cache")
    return InMemoryLegCacheService()


def create_provider(settings: Settings) -> OpenRouteServiceProvider:
    return OpenRouteServiceProvider(
        api_key=settings.openroute_api_key,
        base_url=settings.openroute_base_url,
        timeout=settings.routing_timeout_seconds,
        retry_policy=RetryPolicy(
            max_attempts=settings.routing_max_retries + 1,
            base_delay=settings.routing_retry_delay_seconds,
        ),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build shared clients at startup and close them at shutdown."""
    leg_cache = create_leg_cache(settings)
    provider = create_provider(settings)
    app.state.leg_cache = leg_cache
    app.state.route_builder = RouteBuilderService(leg_cache=leg_cache, provider=provider)
    try:
        yield
    finally:
        try:
            await provider.close()
        finally:
            await leg_cache.close()


app = FastAPI(
    title="Trip Planner Routing API",
    description="Walking routes between itinerary stops",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle malformed request bodies."""
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "error": {
                "code": ErrorCode.VALIDATION_ERROR.value,
                "message": str(exc.errors()),
                "user_message": "Invalid request format. Please check your input.",
                "recovery_options": [],
            },
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors."""
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": {
                "code": ErrorCode.API_ERROR.value,
                "message": str(exc),
                "user_message": "Something went wrong. Please try again.",
                "recovery_options": [],
            },
        },
    )


app.include_router(router, prefix="/api")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
