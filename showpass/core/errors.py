"""
Domain errors and the JSON error envelope.

Services raise these; the handlers registered by ``register_exception_handlers``
turn them into ``{"success": false, "statusCode": ..., "message": ...}``.
"""
import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ShowPassError(Exception):
    status_code = 400

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class NotFound(ShowPassError):
    status_code = 404


class BusinessRuleError(ShowPassError):
    status_code = 400


class ShowtimeNotActive(BusinessRuleError):
    pass


class SeatConflict(BusinessRuleError):
    def __init__(self, seat_ids, message: str = "Some selected seats are already booked"):
        super().__init__(message)
        self.seat_ids = list(seat_ids)


class InsufficientSeats(BusinessRuleError):
    def __init__(self, requested: int, available: int):
        super().__init__("Not enough available seats")
        self.requested = requested
        self.available = available


class AlreadyCancelled(BusinessRuleError):
    def __init__(self, message: str = "Booking already cancelled"):
        super().__init__(message)


class AlreadyCompleted(BusinessRuleError):
    def __init__(self, message: str = "Payment already completed"):
        super().__init__(message)


class AlreadyRefunded(BusinessRuleError):
    def __init__(self, message: str = "Payment already refunded"):
        super().__init__(message)


class RefundWindowClosed(BusinessRuleError):
    pass


class SignatureMismatch(ShowPassError):
    status_code = 401

    def __init__(self, message: str = "Invalid payment signature"):
        super().__init__(message)


class HoldExpired(ShowPassError):
    status_code = 409

    def __init__(self, message: str = "Booking hold expired before payment completed"):
        super().__init__(message)


class ContentUnavailable(ShowPassError):
    """403 before a visibility window opens, 410 once it has closed."""

    status_code = 403


class GatewayError(ShowPassError):
    status_code = 502

    def __init__(self, code: str, message: str, raw: Any = None, gateway: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.raw = raw
        self.gateway = gateway

    def __repr__(self) -> str:
        return f"GatewayError(gateway={self.gateway!r}, code={self.code!r}, message={self.message!r})"


class PayoutError(ShowPassError):
    status_code = 502

    def __init__(self, code: str, message: str, raw: Any = None, step: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.raw = raw
        self.step = step


def error_body(status_code: int, message: str, **extra) -> dict:
    body = {"success": False, "statusCode": status_code, "message": message}
    body.update(extra)
    return body


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ShowPassError)
    async def _domain_error(request: Request, exc: ShowPassError):
        if exc.status_code >= 500:
            logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
        # provider payloads stay server-side
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.status_code, exc.message))

    @app.exception_handler(HTTPException)
    async def _http_error(request: Request, exc: HTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.status_code, message))

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg")}
            for err in exc.errors()
        ]
        return JSONResponse(status_code=400, content=error_body(400, "Validation failed", errors=errors))
