"""Error taxonomy shared by services and routes.

Services raise these; the HTTP status is attached here and only read at the
transport boundary (see app.main).
"""


class ServiceError(Exception):
    http_status = 500
    default_message = "Internal error."

    def __init__(self, message: str | None = None, **details) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class ValidationError(ServiceError):
    http_status = 400
    default_message = "Invalid or missing data."


class AuthenticationError(ServiceError):
    http_status = 401
    default_message = "Authentication required."


class AuthorizationError(ServiceError):
    http_status = 403
    default_message = "Access denied."


class NotFoundError(ServiceError):
    http_status = 404
    default_message = "Not found."


class ConflictError(ServiceError):
    http_status = 409
    default_message = "Operation conflicts with the current state."


class RateLimitError(ServiceError):
    http_status = 429
    default_message = "Too many requests."


class SoftFailure(ServiceError):
    # Reported as success=false with a 200 so ad widgets keep rendering.
    http_status = 200
    default_message = "Operation not completed."


class InsufficientBalanceError(SoftFailure):
    default_message = "Insufficient credit balance."


class BillingUnavailableError(SoftFailure):
    default_message = "Billing is temporarily unavailable."


class InternalError(ServiceError):
    http_status = 500
    default_message = "Internal error."
