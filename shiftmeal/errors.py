"""
Error taxonomy shared by the order pipeline and the HTTP layer.

Every failure carries a stable ``kind`` and a human readable message. The
FastAPI handlers below render them as::

    {"error": true, "kind": "InvalidCart", "message": "...", "status_code": 400}
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ShiftmealError(Exception):
    """Base class for every error the service raises on purpose"""

    kind = "Error"
    status_code = 500
    default_message = "An unexpected error occurred"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(ShiftmealError):
    kind = "Unauthorized"
    status_code = 403
    default_message = "Not authorized"


class InvalidToken(Unauthorized):
    status_code = 401
    default_message = "Invalid token"


class InvalidCredentials(Unauthorized):
    status_code = 401
    default_message = "Invalid email or password"


class NotFound(ShiftmealError):
    kind = "NotFound"
    status_code = 404
    default_message = "Resource not found"


class InvalidInput(ShiftmealError):
    kind = "InvalidInput"
    status_code = 400
    default_message = "Please provide all the fields"


class InvalidCart(ShiftmealError):
    kind = "InvalidCart"
    status_code = 400
    default_message = "Orders are not valid"


class NoActiveShift(ShiftmealError):
    kind = "NoActiveShift"
    status_code = 400
    default_message = "No enrolled shift found"


class InvalidDiscountCode(ShiftmealError):
    kind = "InvalidDiscountCode"
    status_code = 400
    default_message = "Invalid discount code"


class ChangesClosed(ShiftmealError):
    kind = "ChangesClosed"
    status_code = 400
    default_message = "Order changes are closed. Please contact support"


class PaymentProviderError(ShiftmealError):
    kind = "PaymentProviderError"
    status_code = 502
    default_message = "Payment provider request failed"


class Conflict(ShiftmealError):
    kind = "Conflict"
    status_code = 409
    default_message = "Operation conflicts with existing data"


def error_body(kind, message, status_code):
    return {
        "error": True,
        "kind": kind,
        "message": message,
        "status_code": status_code,
    }


async def shiftmeal_error_handler(request: Request, exc: ShiftmealError):
    """Render a taxonomy error"""
    logger.info(f"{exc.kind} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.kind, exc.message, exc.status_code),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed payloads are reported as InvalidInput"""
    logger.info(f"Validation error on {request.method} {request.url.path}: {exc.errors()}")
    body = error_body(InvalidInput.kind, "Validation error", 400)
    body["details"] = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg")}
        for error in exc.errors()
    ]
    return JSONResponse(status_code=400, content=body)


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(ShiftmealError, shiftmeal_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
