"""Error taxonomy shared by the routers and the order lifecycle.

Every error carries the HTTP status it maps to and an ``error`` kind that is
returned to the client next to the human-readable ``detail``.
"""
from typing import Optional


class MarketplaceError(Exception):
    status_code = 500
    error = "InternalError"

    def __init__(self, detail: str, *, status_code: Optional[int] = None):
        super().__init__(detail)
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code


class ValidationError(MarketplaceError):
    status_code = 400
    error = "ValidationError"


class InvalidArgument(ValidationError):
    error = "InvalidArgument"


class NotFound(MarketplaceError):
    status_code = 404
    error = "NotFound"


class ProductNotFound(NotFound):
    # raised while validating an order request, so it is a 400 there
    status_code = 400

    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id


class Unauthenticated(MarketplaceError):
    status_code = 401
    error = "Unauthenticated"


class Forbidden(MarketplaceError):
    status_code = 403
    error = "Forbidden"


class Conflict(MarketplaceError):
    status_code = 409
    error = "Conflict"


class InsufficientStock(Conflict):
    status_code = 400

    def __init__(self, product_id: int, name: str, available: int, requested: int):
        super().__init__(
            f'Insufficient stock for "{name}" (ID: {product_id}). '
            f"Available: {available}, Requested: {requested}"
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class ExternalServiceError(MarketplaceError):
    status_code = 503
    error = "ExternalServiceError"


class SignatureVerificationError(MarketplaceError):
    status_code = 400
    error = "SignatureVerificationError"
