# errors.py
# ============================================================================
# HANDMADE STORE BACKEND — ERROR TAXONOMY
# ============================================================================
# Every failure the API reports on purpose is a StoreError subclass. The API
# layer renders them as {"error": ..., "details": ...} with the class status.
# ============================================================================

from typing import Any, Dict, List, Optional


class StoreError(Exception):
    """Base class for errors surfaced to the caller"""

    status_code: int = 500
    message: str = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message or self.message
        self.details = details
        self.headers = headers
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class Unauthorized(StoreError):
    status_code = 401
    message = "Unauthorized"


class ValidationFailed(StoreError):
    """Malformed input; details is a list of {field, message}"""
    status_code = 400
    message = "Validation failed"

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationFailed":
        return cls(details=[{"field": field, "message": message}])


class NotFound(StoreError):
    status_code = 404
    message = "Not found"


class Conflict(StoreError):
    status_code = 409
    message = "Conflict"


class RateLimited(StoreError):
    status_code = 429
    message = "Too many requests. Please try again later."


class InvalidSignature(StoreError):
    status_code = 400
    message = "Webhook signature verification failed"


class MissingSecret(StoreError):
    """The webhook signing secret is not configured on this server."""
    status_code = 500
    message = "Webhook secret not configured"


class InvalidTransition(StoreError):
    status_code = 409
    message = "Invalid order status transition"


class Internal(StoreError):
    status_code = 500
    message = "Internal server error"


# =============================================================================
# CHECKOUT BUSINESS RULES
# =============================================================================

class EmptyCart(StoreError):
    status_code = 400
    message = "No items in cart"


class InvalidOrInactiveProduct(StoreError):
    status_code = 400
    message = "Some products are invalid or inactive"

    def __init__(self, product_ids: Optional[List[str]] = None):
        super().__init__(details={"productIds": product_ids} if product_ids else None)
        self.product_ids = product_ids or []


class InsufficientStock(StoreError):
    status_code = 400

    def __init__(self, product_id: str, product_name: str, available: int, requested: int):
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for {product_name}. "
            f"Available: {available}, Requested: {requested}",
            details={
                "productId": product_id,
                "available": available,
                "requested": requested,
            },
        )
