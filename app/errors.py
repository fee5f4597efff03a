"""
Error taxonomy for the session/key core.

Every error carries the HTTP status the route layer should map it to and
whether the queue should retry the job that raised it.
"""


class ServiceError(Exception):
    """Base exception for session and worker operations."""

    status_code = 500
    recoverable = False

    def __init__(self, message: str, operation: str | None = None):
        super().__init__(message)
        self.message = message
        self.operation = operation


class ValidationError(ServiceError):
    """Malformed input to a manager operation or job payload."""

    status_code = 400


class NotFoundError(ServiceError):
    """Referenced session or key does not exist, or the session is inactive."""

    status_code = 404


class ConflictError(ServiceError):
    """A uniqueness invariant would be violated."""

    status_code = 409


class TransientStorageError(ServiceError):
    """Storage I/O failure; safe to retry."""

    status_code = 503
    recoverable = True


class ResolutionError(ServiceError):
    """Identity lookup failed for one or more identifiers."""

    status_code = 502
    recoverable = True

    def __init__(self, message: str, failed_dids: list[str] | None = None, operation: str | None = None):
        super().__init__(message, operation=operation)
        self.failed_dids = list(failed_dids or [])


class UpstreamServiceError(ServiceError):
    """A dependent internal service (trusted-users, user-keys) failed."""

    status_code = 502
    recoverable = True
