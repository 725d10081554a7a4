"""
Custom exceptions for the StoryGuard moderation service.

The moderation engine converts provider failures into conservative verdicts,
so only the HTTP-facing services let these exceptions reach a caller.
"""

from typing import Optional, Dict, Any
from fastapi import HTTPException


class StoryGuardException(Exception):
    """Base exception for all moderation service errors."""

    error_code = "STORYGUARD_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code or self.error_code
        self.details = details or {}
        super().__init__(self.message)


class ClassifierProviderException(StoryGuardException):
    """Raised when a remote classifier is unreachable or answers badly."""

    error_code = "CLASSIFIER_PROVIDER_ERROR"

    def __init__(self, message: str, endpoint: str = "unknown", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details={**(details or {}), "endpoint": endpoint})


class NotificationServiceException(StoryGuardException):
    """A notification channel gave up after its retries."""

    error_code = "NOTIFICATION_SERVICE_ERROR"

    def __init__(self, message: str, channel: str = "unknown", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details={**(details or {}), "channel": channel})


class DatabaseException(StoryGuardException):
    error_code = "DATABASE_ERROR"

    def __init__(self, message: str, operation: str = "unknown", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details={**(details or {}), "operation": operation})


class ValidationException(StoryGuardException):
    """A story payload failed validation; ``field`` names the culprit."""

    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str = "unknown", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details={**(details or {}), "field": field})


class StoryNotFoundException(StoryGuardException):
    error_code = "STORY_NOT_FOUND"

    def __init__(self, story_id: Any, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"Story {story_id} not found", details={**(details or {}), "story_id": str(story_id)})


class RateLimitException(StoryGuardException):
    error_code = "RATE_LIMIT_EXCEEDED"

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: int = 60,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details={**(details or {}), "retry_after": retry_after})


def create_http_exception(
    exception: StoryGuardException,
    status_code: Optional[int] = None
) -> HTTPException:
    """
    Convert a service exception to a FastAPI HTTPException.

    Args:
        exception: Service exception instance
        status_code: HTTP status code; looked up from the mapping when omitted

    Returns:
        HTTPException instance
    """
    if status_code is None:
        status_code = EXCEPTION_STATUS_MAPPING.get(exception.__class__, 500)
    return HTTPException(
        status_code=status_code,
        detail={
            "error_code": exception.error_code,
            "message": exception.message,
            "details": exception.details
        }
    )


EXCEPTION_STATUS_MAPPING = {
    ClassifierProviderException: 503,
    NotificationServiceException: 502,
    DatabaseException: 500,
    ValidationException: 400,
    StoryNotFoundException: 404,
    RateLimitException: 429,
}
