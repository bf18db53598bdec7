"""
Error taxonomy shared by the coordinator, the stores, the API and the
driver client.

Every error carries a stable ``code`` (what the RPC surface returns), the
HTTP status it maps to and whether the client may retry the identical
action.  ``ALREADY_TAKEN`` is deliberately absent: losing a claim race is
an outcome (see ``ClaimOutcome``), not a failure.
"""

from __future__ import annotations


class ClaimError(Exception):
    """Base class for every protocol error."""

    code = "internal"
    status_code = 500
    retryable = False
    default_message = "Internal error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(ClaimError):
    code = "unauthenticated"
    status_code = 401
    default_message = "You must be authenticated"


class PermissionDenied(ClaimError):
    code = "permission-denied"
    status_code = 403
    default_message = "Driver not in assigned list"


class NotFound(ClaimError):
    code = "not-found"
    status_code = 404
    default_message = "Not found"


class InvalidArgument(ClaimError):
    code = "invalid-argument"
    status_code = 400
    default_message = "Invalid argument"


class FailedPrecondition(ClaimError):
    code = "failed-precondition"
    status_code = 409
    default_message = "Operation not allowed in the current state"


class DeadlineExceeded(ClaimError):
    code = "deadline-exceeded"
    status_code = 504
    retryable = True
    default_message = "Request timed out. Please try again."


class Unavailable(ClaimError):
    code = "unavailable"
    status_code = 503
    retryable = True
    default_message = "Service unavailable. Please try again."


class Internal(ClaimError):
    code = "internal"
    status_code = 500
    default_message = "Internal error"


ERRORS_BY_CODE: dict[str, type[ClaimError]] = {
    cls.code: cls
    for cls in (
        Unauthenticated,
        PermissionDenied,
        NotFound,
        InvalidArgument,
        FailedPrecondition,
        DeadlineExceeded,
        Unavailable,
        Internal,
    )
}
