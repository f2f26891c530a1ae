"""Exceptions raised by the storefront services.

Every error carries a machine-readable ``kind`` and the HTTP status the API
answers with. The API layer turns them into ``{"detail", "error_type"}``
responses.
"""


class ShopError(Exception):
    """Base exception for all storefront errors."""

    kind = "Error"
    status_code = 500


# --- Client errors ---


class ValidationError(ShopError):
    """Malformed or missing input."""

    kind = "ValidationError"
    status_code = 400


class EmptyOrderError(ValidationError):
    kind = "EmptyOrder"

    def __init__(self, msg: str = "No items in order"):
        super().__init__(msg)


class EmptyCartError(ValidationError):
    kind = "EmptyCart"

    def __init__(self):
        super().__init__("Cart is empty")


class InvalidQuantityError(ValidationError):
    kind = "InvalidQuantity"

    def __init__(self, quantity):
        self.quantity = quantity
        super().__init__(f"Quantity must be a positive integer, got {quantity!r}")


class InvalidStatusError(ValidationError):
    kind = "InvalidStatus"

    def __init__(self, status):
        self.status = status
        super().__init__(f"Invalid status: {status}")


class InvalidRatingError(ValidationError):
    kind = "InvalidRating"

    def __init__(self, rating):
        self.rating = rating
        super().__init__(f"Rating must be an integer between 1 and 5, got {rating!r}")


class InvalidRoleError(ValidationError):
    kind = "InvalidRole"

    def __init__(self, role):
        self.role = role
        super().__init__(f"Invalid role: {role}")


class NotFoundError(ShopError):
    """Raised when an id does not match any record."""

    kind = "NotFound"
    status_code = 404

    def __init__(self, what: str, ident=None):
        self.ident = ident
        msg = f"{what} not found"
        if ident is not None:
            msg = f"{msg}: {ident}"
        super().__init__(msg)


class ProductNotFoundError(NotFoundError):
    kind = "ProductNotFound"

    def __init__(self, product_id):
        super().__init__("Product", product_id)


class OrderNotFoundError(NotFoundError):
    kind = "OrderNotFound"

    def __init__(self, order_id):
        super().__init__("Order", order_id)


class UserNotFoundError(NotFoundError):
    kind = "UserNotFound"

    def __init__(self, user_id):
        super().__init__("User", user_id)


class ConflictError(ShopError):
    """Request is well-formed but conflicts with current state."""

    kind = "Conflict"
    status_code = 400


class InsufficientStockError(ConflictError):
    kind = "InsufficientStock"

    def __init__(self, product_name: str):
        self.product_name = product_name
        super().__init__(f"{product_name} has insufficient stock")


class DuplicateReviewError(ConflictError):
    kind = "DuplicateReview"

    def __init__(self):
        super().__init__("You already reviewed this product")


class InvalidStatusTransitionError(ConflictError):
    kind = "InvalidStatusTransition"

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot change order status from {current} to {requested}")


class EmailTakenError(ConflictError):
    kind = "EmailTaken"

    def __init__(self):
        super().__init__("User already exists")


class AuthenticationError(ShopError):
    """Missing, invalid, expired or revoked credentials."""

    kind = "AuthenticationError"
    status_code = 401


class AuthorizationError(ShopError):
    """Caller is authenticated but not allowed to do this."""

    kind = "AuthorizationError"
    status_code = 403


class ForbiddenError(AuthorizationError):
    kind = "Forbidden"


class PurchaseRequiredError(AuthorizationError):
    kind = "PurchaseRequired"

    def __init__(self):
        super().__init__("You must purchase the product first")


# --- Server errors ---


class InternalError(ShopError):
    """Store or network failure. The message is never shown to clients."""

    kind = "InternalError"
    status_code = 500


class StoreError(InternalError):
    kind = "StoreError"


class OperationTimeoutError(InternalError):
    kind = "Timeout"
    status_code = 504
