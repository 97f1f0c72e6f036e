"""Walking directions from OpenRouteService.

One call per leg: two coordinates in, one encoded polyline plus the
leg's distance and duration out. Rate-limited (429) and timed-out calls
are retried with linear backoff according to a ``RetryPolicy``; every
other failure is raised immediately.
"""

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx

from tripplanner.models import Stop, UpstreamError, UpstreamTimeoutError

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class ProviderRoute:
    """The parts of a provider response a leg needs."""
    geometry: str
    distance_meters: float
    duration_seconds: float


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with linear backoff.

    Before attempt ``n + 1`` the caller waits ``base_delay * n`` seconds,
    so with the defaults: 1s after the first failure, 2s after the second.
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    retry_statuses: frozenset[int] = frozenset({429})
    retry_on_timeout: bool = True

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * attempt

    def should_retry_status(self, status: int, attempt: int) -> bool:
        return status in self.retry_statuses and attempt < self.max_attempts

    def should_retry_timeout(self, attempt: int) -> bool:
        return self.retry_on_timeout and attempt < self.max_attempts


class RoutingProviderService(ABC):
    """Abstract base class for walking-directions providers."""

    @abstractmethod
    async def fetch_walking_route(self, origin: Stop, destination: Stop) -> ProviderRoute:
        pass

    async def close(self) -> None:
        pass


def _error_message(response: httpx.Response) -> str:
    """Pull a readable message out of an error body, which may not be JSON."""
    try:
        data = response.json()
    except ValueError:
        return "Unknown error"
    if not isinstance(data, dict):
        return "Unknown error"
    error = data.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if data.get("message"):
        return str(data["message"])
    return "Unknown error"


class OpenRouteServiceProvider(RoutingProviderService):
    """OpenRouteService ``foot-walking`` directions client."""

    BASE_URL = "https://api.openrouteservice.org"
    DIRECTIONS_PATH = "/v2/directions/foot-walking"

    def __init__(
        self,
        api_key: str | None,
        base_url: str | None = None,
        timeout: float = 10.0,
        retry_policy: RetryPolicy | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        if not api_key:
            raise ValueError("OPENROUTE_API_KEY not provided")
        self._api_key = api_key
        self._base_url = (base_url or self.BASE_URL).rstrip("/")
        self._timeout = timeout
        self._retry_policy = retry_policy or RetryPolicy()
        self._client = client
        self._sleep = sleep

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _backoff(self, attempt: int, reason: str) -> None:
        delay = self._retry_policy.delay_for(attempt)
        logger.warning(
            f"[ORS] {reason} on attempt {attempt}/{self._retry_policy.max_attempts}, "
            f"retrying in {delay:.1f}s"
        )
        await self._sleep(delay)

    async def fetch_walking_route(self, origin: Stop, destination: Stop) -> ProviderRoute:
        """Fetch walking directions between two stops.

        Raises:
            UpstreamError: Non-success response, exhausted rate-limit
                retries, transport failure, or a payload without route data.
            UpstreamTimeoutError: Every attempt timed out.
        """
        client = self._get_client()
        url = f"{self._base_url}{self.DIRECTIONS_PATH}"
        headers = {
            "Authorization": self._api_key,
            "Content-Type": "application/json",
        }
        # ORS wants [lng, lat]
        payload = {
            "coordinates": [
                [origin.lng, origin.lat],
                [destination.lng, destination.lat],
            ]
        }

        attempt = 0
        while True:
            attempt += 1
            try:
                response = await asyncio.wait_for(
                    client.post(url, json=payload, headers=headers),
                    timeout=self._timeout,
                )
            except (asyncio.TimeoutError, httpx.TimeoutException):
                if self._retry_policy.should_retry_timeout(attempt):
                    await self._backoff(attempt, "Timeout")
                    continue
                raise UpstreamTimeoutError(
                    f"OpenRouteService request timed out after {attempt} attempts"
                )
            except httpx.HTTPError as e:
                raise UpstreamError(
                    "Failed to fetch route from OpenRouteService", detail=str(e)
                ) from e

            if self._retry_policy.should_retry_status(response.status_code, attempt):
                await self._backoff(attempt, f"HTTP {response.status_code}")
                continue

            if not response.is_success:
                raise UpstreamError(
                    f"OpenRouteService API error: {response.status_code}",
                    status=response.status_code,
                    detail=_error_message(response),
                )

            logger.info(f"[ORS] {origin.id} -> {destination.id} ok after {attempt} attempt(s)")
            return self._parse_route(response)

    def _parse_route(self, response: httpx.Response) -> ProviderRoute:
        try:
            data = response.json()
            route = data["routes"][0]
            segment = route["segments"][0]
            geometry = route["geometry"]
            distance = float(segment.get("distance", 0.0))
            duration = float(segment.get("duration", 0.0))
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            raise UpstreamError(
                "Invalid response from OpenRouteService: missing route data",
                status=response.status_code,
            ) from e

        if not isinstance(geometry, str) or not geometry:
            raise UpstreamError(
                "Invalid response from OpenRouteService: missing route data",
                status=response.status_code,
            )
        for name, value in (("distance", distance), ("duration", duration)):
            if not math.isfinite(value) or value < 0:
                raise UpstreamError(
                    f"Invalid response from OpenRouteService: bad segment {name}",
                    status=response.status_code,
                    detail=f"{name}={value!r}",
                )
        return ProviderRoute(geometry=geometry, distance_meters=distance, duration_seconds=duration)
