class MarketplaceError(Exception):
    """Base class for domain errors surfaced to API callers."""

    status_code = 400
    code = "ERROR"

    def __init__(self, detail: str, code: str | None = None):
        super().__init__(detail)
        self.detail = detail
        if code:
            self.code = code


class ValidationFailed(MarketplaceError):
    status_code = 400
    code = "VALIDATION_FAILED"


class PermissionDenied(MarketplaceError):
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(MarketplaceError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(MarketplaceError):
    status_code = 409
    code = "CONFLICT"


class InvalidTransition(ConflictError):
    code = "INVALID_TRANSITION"


class GatewayError(MarketplaceError):
    status_code = 502
    code = "GATEWAY_ERROR"
