"""Domain errors raised by the checkout, order and payment services.

Every error carries a stable upper-snake ``code`` (returned to API
clients as ``detail``), a human readable ``message`` and the HTTP status
the views answer with. They subclass ``ValueError`` so callers that only
care about "the request was rejected" can keep catching that.
"""


class DomainError(ValueError):
    """Base class for caller-visible failures.

    Args:
        message: Actionable description shown to the caller.
        code: Optional override of the class default code.
    """

    status_code = 400
    code = "BAD_REQUEST"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class BadRequest(DomainError):
    status_code = 400
    code = "BAD_REQUEST"


class Unauthorized(DomainError):
    status_code = 401
    code = "UNAUTHORIZED"


class Forbidden(DomainError):
    status_code = 403
    code = "FORBIDDEN"


class NotFound(DomainError):
    status_code = 404
    code = "NOT_FOUND"


class Conflict(DomainError):
    status_code = 409
    code = "CONFLICT"


class PreconditionFailed(DomainError):
    status_code = 412
    code = "PRECONDITION_FAILED"
