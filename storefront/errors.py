from typing import Optional


class ConfigurationError(Exception):
    """Raised while building settings; the process must not serve traffic."""


class ApiError(Exception):
    status_code = 500
    default_message = "Internal Server Error"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code


class InvalidInput(ApiError):
    status_code = 400
    default_message = "Invalid input."


class InvalidQueryParameter(InvalidInput):
    default_message = "Invalid query parameter."


class Unauthorized(ApiError):
    status_code = 401
    default_message = "Please Login to access this resource"


class Forbidden(ApiError):
    status_code = 403
    default_message = "You need additional permissions to perform this action."


class NotFound(ApiError):
    status_code = 404
    default_message = "Resource not found."


class Conflict(ApiError):
    status_code = 409
    default_message = "The resource was modified concurrently. Please retry."


class UpstreamFailure(ApiError):
    status_code = 500
    default_message = "An upstream service failed."
