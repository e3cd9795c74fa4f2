from fastapi import status


class ServiceError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "Internal Server Error"

    def __init__(self, detail: str = None):
        super().__init__(detail or self.error)
        self.detail = detail or self.error


class ValidationError(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "Validation Error"


class AuthorizationError(ServiceError):
    """Caller is not authenticated (401) or not allowed to touch the resource (403)."""

    status_code = status.HTTP_403_FORBIDDEN
    error = "Forbidden"

    def __init__(self, detail: str = None, authenticated: bool = True):
        self.authenticated = authenticated
        if not authenticated:
            self.status_code = status.HTTP_401_UNAUTHORIZED
            self.error = "Unauthorized"
        super().__init__(detail)


class NotFoundError(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "Not Found"


class ConflictError(ServiceError):
    status_code = status.HTTP_409_CONFLICT
    error = "Conflict"


class StoreUnavailableError(ServiceError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error = "Service Unavailable"


class UpstreamAuthError(ServiceError):
    status_code = status.HTTP_502_BAD_GATEWAY
    error = "Bad Gateway"


def unauthenticated(detail: str = "Authentication required") -> AuthorizationError:
    return AuthorizationError(detail, authenticated=False)
