import logging

from fastapi import Request, HTTPException, status
from fastapi.responses import JSONResponse
from typing import Any, Callable

from .enums import ErrorCode


logger = logging.getLogger(__name__)


class APIException(Exception):
    """ Base class for all exceptions in the Storefront API. """
    pass


class InvalidQuantityError(APIException, ValueError):
    """ Exception is raised when a cart line quantity is outside the allowed range. """

    def __init__(self, quantity: Any, max_quantity: int):
        self.quantity = quantity
        self.max_quantity = max_quantity
        super().__init__(f"Quantity must be between 1 and {max_quantity}")


class DuplicateDiscountUsage(APIException):
    """ Exception is raised when a discount redemption loses the race on the usage ledger. """

    def __init__(self, discount_id: int, session_id: str):
        self.discount_id = discount_id
        self.session_id = session_id
        super().__init__(f"Discount {discount_id} already redeemed for session {session_id}")


class PaymentGatewayError(APIException):
    """ Exception is raised when the payment gateway is unreachable, misconfigured or returns an error. """
    pass


class AdminKeyRequiredException(APIException):
    """ Exception is raised when an admin endpoint is called without a valid admin key. """
    pass


class NotFoundException(HTTPException):
    def __init__(self, detail: Any = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class BadRequestException(HTTPException):
    def __init__(self, detail: Any = "Bad request"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class ForbiddenException(HTTPException):
    def __init__(self, detail: Any = "Forbidden"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class ConflictException(HTTPException):
    def __init__(self, detail: Any = "Resource already exists"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class BadGatewayException(HTTPException):
    def __init__(self, detail: Any = "Upstream service error"):
        super().__init__(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)


NOT_FOUND_CODES = {
    ErrorCode.PRODUCT_NOT_FOUND,
    ErrorCode.CART_NOT_FOUND,
    ErrorCode.CART_ITEM_NOT_FOUND,
    ErrorCode.DISCOUNT_NOT_FOUND,
    ErrorCode.SHIPPING_CITY_NOT_FOUND,
    ErrorCode.ORDER_NOT_FOUND,
    ErrorCode.REVIEW_NOT_FOUND,
    ErrorCode.PAYMENT_NOT_FOUND,
}

CONFLICT_CODES = {
    ErrorCode.DISCOUNT_CODE_EXISTS,
    ErrorCode.SHIPPING_CITY_EXISTS,
    ErrorCode.SHIPPING_CITY_IN_USE,
    ErrorCode.DUPLICATE_USAGE,
}


def raise_for_result(result) -> Any:
    """
    Unwraps a ServiceResult for a route handler.

    Returns the result data when the operation succeeded, otherwise raises the HTTP
    exception matching the result's error code. The response detail always carries
    the machine-readable code next to the user-facing message.
    """
    if result.succeeded:
        return result.data

    detail = {"code": result.error_code, "message": result.error_message}

    if result.error_code in NOT_FOUND_CODES:
        raise NotFoundException(detail=detail)
    if result.error_code in CONFLICT_CODES:
        raise ConflictException(detail=detail)
    if result.error_code == ErrorCode.ACCESS_DENIED:
        raise ForbiddenException(detail=detail)
    if result.error_code == ErrorCode.PAYMENT_GATEWAY_ERROR:
        raise BadGatewayException(detail=detail)

    raise BadRequestException(detail=detail)


def create_exception_handler(status_code: int, detail: Any) -> Callable[[Request, Exception], JSONResponse]:
    async def exception_handler(request: Request, exception: APIException):
        return JSONResponse(
            content={"detail": detail},
            status_code=status_code
        )

    return exception_handler


async def persistence_exception_handler(request: Request, exception: Exception) -> JSONResponse:
    logger.exception("Unhandled persistence error on %s %s", request.method, request.url.path)
    return JSONResponse(
        content={"detail": "Something went wrong on our side. Please try again later."},
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
