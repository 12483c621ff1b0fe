"""
API error taxonomy.

Every handled failure is raised as one of these and rendered by the app's
exception handlers as {"success": false, "message": ...} with the class's
HTTP status.
"""

from typing import Optional


class ApiError(Exception):
    status_code = 500
    default_message = "An unexpected internal server error occurred."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ApiError):
    status_code = 400
    default_message = "Validation error occurred."


class Unauthenticated(ApiError):
    status_code = 401
    default_message = "Authentication required."


class Forbidden(ApiError):
    status_code = 403
    default_message = "Access denied."


class NotFound(ApiError):
    status_code = 404
    default_message = "Not found."


class Conflict(ApiError):
    status_code = 409
    default_message = "Duplicate entry found."


class Internal(ApiError):
    status_code = 500
