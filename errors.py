from typing import Optional


class ApiError(Exception):
    """Base for every failure that maps onto an HTTP error response."""

    status_code = 500
    error = "internal_error"
    default_message = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, object]:
        return {"error": self.error, "message": self.message}


class ValidationError(ApiError):
    status_code = 400
    error = "validation_error"
    default_message = "Invalid request data"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[list[dict[str, str]]] = None,
    ) -> None:
        super().__init__(message)
        self.details = details or []

    def to_dict(self) -> dict[str, object]:
        data = super().to_dict()
        if self.details:
            data["details"] = self.details
        return data


class Unauthenticated(ApiError):
    status_code = 401
    error = "unauthenticated"
    default_message = "No token provided"


class InvalidToken(Unauthenticated):
    error = "invalid_token"
    default_message = "Token verification failed"


class InvalidCredentials(Unauthenticated):
    error = "invalid_credentials"
    default_message = "Invalid email or password"


class Forbidden(ApiError):
    status_code = 403
    error = "forbidden"
    default_message = "Insufficient permissions"


class NotFound(ApiError):
    status_code = 404
    error = "not_found"
    default_message = "Resource not found"


class Conflict(ApiError):
    # duplicate registrations have always been reported as 400
    status_code = 400
    error = "conflict"
    default_message = "Resource already exists"


class InternalError(ApiError):
    pass
