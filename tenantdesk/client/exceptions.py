"""Exceptions raised by the TenantDesk client."""


class TenantDeskError(Exception):
    """Base exception for all client errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class ValidationError(TenantDeskError):
    def __init__(self, message: str = "Validation failed") -> None:
        super().__init__(message, status_code=400)


class AuthenticationError(TenantDeskError):
    def __init__(self, message: str = "Authentication failed") -> None:
        super().__init__(message, status_code=401)


class PermissionDeniedError(TenantDeskError):
    def __init__(self, message: str = "Permission denied") -> None:
        super().__init__(message, status_code=403)


class ResourceNotFoundError(TenantDeskError):
    def __init__(self, message: str = "Resource not found") -> None:
        super().__init__(message, status_code=404)


class ConflictError(TenantDeskError):
    def __init__(self, message: str = "Conflict") -> None:
        super().__init__(message, status_code=409)


class RateLimitError(TenantDeskError):
    def __init__(self, message: str = "Rate limit exceeded") -> None:
        super().__init__(message, status_code=429)
