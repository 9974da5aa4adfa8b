"""Error taxonomy shared by the services and the HTTP layer."""

from typing import Optional


class ServiceError(ValueError):
    status_code = 400
    code = "bad_request"

    def __init__(self, message: str, *, reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.reason = reason


class NotFoundError(ServiceError):
    status_code = 404
    code = "not_found"


class ForbiddenError(ServiceError):
    status_code = 403
    code = "forbidden"


class ConflictError(ServiceError):
    status_code = 409
    code = "conflict"


class InvalidArgumentError(ServiceError):
    """A proposed change violates a segment rule.

    ``reason`` names the rule so callers can render a precise message.
    """

    status_code = 400
    code = "invalid_argument"

    def __init__(self, message: str, *, reason: str) -> None:
        super().__init__(message, reason=reason)


class TransientError(ServiceError):
    """The store could not complete the transaction; safe to retry."""

    status_code = 503
    code = "transient"
