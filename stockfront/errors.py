"""Error taxonomy of the checkout core.

Every error carries a stable ``code`` and the HTTP status the server maps it
to. The ``message`` is what a buyer or operator gets to see.
"""


class CheckoutError(Exception):
    code = "checkout_error"
    status_code = 400
    default_message = "Request could not be completed."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class InvalidRequestError(CheckoutError):
    code = "invalid_request"
    status_code = 400


class InsufficientStockError(CheckoutError):
    code = "insufficient_stock"
    status_code = 409
    default_message = "Not enough stock left. Lower the quantity or try again later."

    def __init__(self, product_id: int, requested: int, available: int | None = None):
        super().__init__()
        self.product_id = product_id
        self.requested = requested
        self.available = available


class GatewayUnavailableError(CheckoutError):
    code = "gateway_unavailable"
    status_code = 503
    default_message = "Payment gateway is unreachable. Please wait and try again."


class GatewayRejectedError(CheckoutError):
    code = "gateway_rejected"
    status_code = 502
    default_message = "Payment gateway refused the request."


class PersistenceError(CheckoutError):
    code = "persistence_error"
    status_code = 500
    default_message = "Something went wrong on our side. Please try again."


class InvalidTransitionError(CheckoutError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, order_id: str, status: str, action: str):
        super().__init__(f"order {order_id} is {status}; cannot {action}")
        self.order_id = order_id
        self.status = status
        self.action = action


class OrderNotFoundError(CheckoutError):
    code = "order_not_found"
    status_code = 404
    default_message = "Order not found."


class ProductNotFoundError(CheckoutError):
    code = "product_not_found"
    status_code = 404
    default_message = "Product not found."


class StoreClosedError(CheckoutError):
    code = "store_closed"
    status_code = 403
    default_message = "The store is not taking orders right now."


class DeliveryError(CheckoutError):
    code = "delivery_failed"
    status_code = 500
    default_message = "Payment received but content could not be delivered yet."
