"""
Error taxonomy and the JSON response envelope

Every response body has the shape
    {"success": bool, "data"?: object, "message"?: str, "error"?: str}
Handlers raise one of the ApiError subclasses below; main.py renders them.
"""

from typing import Any, Optional


class ApiError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, data: Optional[dict] = None):
        self.message = message or self.default_message
        self.data = data
        super().__init__(self.message)

    def to_body(self) -> dict:
        body = {"success": False, "error": self.message}
        if self.data is not None:
            body["data"] = self.data
        return body


class ValidationFailed(ApiError):
    status_code = 400
    default_message = "Invalid request data"


class InvalidTransition(ApiError):
    status_code = 400
    default_message = "Invalid status transition"


class AuthenticationError(ApiError):
    status_code = 401
    default_message = "Authentication required"


class AuthorizationError(ApiError):
    status_code = 403
    default_message = "Unauthorized access"


class QuotaExceeded(ApiError):
    status_code = 403
    default_message = "Subscription limit reached"

    def __init__(self, message: str, current: int, maximum: int):
        super().__init__(message, data={"current": current, "max": maximum, "upgradeRequired": True})
        self.current = current
        self.maximum = maximum


class NotFound(ApiError):
    status_code = 404
    default_message = "Not found"


class Conflict(ApiError):
    status_code = 409
    default_message = "Conflict"


class RateLimited(ApiError):
    status_code = 429
    default_message = "Too many requests. Please try again later."


class ServiceError(ApiError):
    status_code = 500


class GatewayError(ServiceError):
    status_code = 502
    default_message = "Payment gateway error"


def envelope(data: Any = None, message: Optional[str] = None) -> dict:
    body = {"success": True}
    if data is not None:
        body["data"] = data
    if message is not None:
        body["message"] = message
    return body
