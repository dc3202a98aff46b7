import enum


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentMethod(str, enum.Enum):
    CASH_ON_DELIVERY = "cash_on_delivery"
    CARD = "card"
    WALLET = "wallet"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class ReviewStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ErrorCode(str, enum.Enum):
    # field-level input problems
    INVALID_QUANTITY = "invalid_quantity"
    INVALID_INPUT = "invalid_input"

    # domain rule violations
    PRODUCT_NOT_FOUND = "product_not_found"
    COLOR_NOT_AVAILABLE = "color_not_available"
    INSUFFICIENT_STOCK = "insufficient_stock"
    CART_NOT_FOUND = "cart_not_found"
    CART_ITEM_NOT_FOUND = "cart_item_not_found"
    CART_EMPTY = "cart_empty"
    DISCOUNT_NOT_FOUND = "discount_not_found"
    DISCOUNT_INACTIVE = "discount_inactive"
    DISCOUNT_NOT_YET_STARTED = "discount_not_yet_started"
    DISCOUNT_EXPIRED = "discount_expired"
    MINIMUM_ORDER_NOT_MET = "minimum_order_not_met"
    USAGE_LIMIT_REACHED = "usage_limit_reached"
    DISCOUNT_CODE_EXISTS = "discount_code_exists"
    SHIPPING_CITY_NOT_FOUND = "shipping_city_not_found"
    SHIPPING_CITY_INACTIVE = "shipping_city_inactive"
    SHIPPING_CITY_EXISTS = "shipping_city_exists"
    SHIPPING_CITY_IN_USE = "shipping_city_in_use"
    ORDER_NOT_FOUND = "order_not_found"
    INVALID_STATUS_TRANSITION = "invalid_status_transition"
    REVIEW_NOT_FOUND = "review_not_found"

    # concurrency
    DUPLICATE_USAGE = "duplicate_usage"

    # external services
    PAYMENT_GATEWAY_ERROR = "payment_gateway_error"
    PAYMENT_NOT_FOUND = "payment_not_found"
    INVALID_SIGNATURE = "invalid_signature"

    ACCESS_DENIED = "access_denied"
