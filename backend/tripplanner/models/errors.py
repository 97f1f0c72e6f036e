"""Error models and the route-building exception taxonomy.

``AppError`` is the error payload returned to the frontend. The exception
classes are raised by the services and converted to ``AppError`` at the
API boundary.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    """Machine-readable error codes shared with the frontend."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    ROUTING_PROVIDER_ERROR = "ROUTING_PROVIDER_ERROR"
    ROUTING_TIMEOUT = "ROUTING_TIMEOUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    API_ERROR = "API_ERROR"


class RecoveryOption(BaseModel):
    """An action the user can take to recover from an error."""

    label: str
    action: str
    params: Optional[dict[str, Any]] = None


class AppError(BaseModel):
    """Error details returned in API responses."""

    code: ErrorCode
    message: str = Field(..., description="Technical message for logs")
    user_message: str = Field(..., description="Message safe to show the user")
    recovery_options: list[RecoveryOption] = Field(default_factory=list)


class RouteBuildError(Exception):
    """Base class for failures while building a route."""

    code = ErrorCode.INTERNAL_ERROR
    http_status = 500
    user_message = "Something went wrong while building the route."
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_app_error(self) -> AppError:
        options = [RecoveryOption(label="Retry", action="retry")] if self.retryable else []
        return AppError(
            code=self.code,
            message=str(self),
            user_message=self.user_message,
            recovery_options=options,
        )


class RouteValidationError(RouteBuildError):
    """The caller supplied an unusable stop sequence."""

    code = ErrorCode.VALIDATION_ERROR
    http_status = 422
    user_message = "Invalid stops. Please check the itinerary and try again."


class UpstreamError(RouteBuildError):
    """The routing provider failed or returned an unusable payload."""

    code = ErrorCode.ROUTING_PROVIDER_ERROR
    http_status = 502
    user_message = "Walking directions are unavailable right now."
    retryable = True

    def __init__(self, message: str, status: int | None = None, detail: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.detail = detail

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message} ({self.detail})"
        return self.message


class UpstreamTimeoutError(RouteBuildError):
    """The routing provider did not answer in time, even after retries."""

    code = ErrorCode.ROUTING_TIMEOUT
    http_status = 504
    user_message = "The routing service took too long to respond."
    retryable = True


class InternalError(RouteBuildError):
    """A leg that should exist in the cache could not be found."""
