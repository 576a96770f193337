class CoolTrackError(ValueError):
    """Base for domain failures surfaced to the caller with a reason."""

    status_code = 400
    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CoolTrackError):
    status_code = 400
    kind = "validation_error"


class NotFoundError(CoolTrackError):
    status_code = 404
    kind = "not_found"


class ConflictError(CoolTrackError):
    status_code = 409
    kind = "conflict"


class InsufficientStockError(ConflictError):
    kind = "insufficient_stock"

    def __init__(self, message: str, *, available=None, requested=None):
        super().__init__(message)
        self.available = available
        self.requested = requested


class AuthorizationError(CoolTrackError):
    status_code = 403
    kind = "forbidden"


class PolicyError(CoolTrackError):
    status_code = 422
    kind = "policy_violation"
