"""
Error taxonomy shared by every service.

Each error carries a stable machine-readable ``code`` and the HTTP status the
API layer should answer with. Services raise them inside their transaction so
the surrounding ``session.begin()`` rolls back before the handler renders them.
"""
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import structlog

logger = structlog.get_logger(__name__)


class ServiceError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "BAD_REQUEST"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(ServiceError):
    code = "VALIDATION_ERROR"


class ProductUnavailable(ServiceError):
    code = "PRODUCT_UNAVAILABLE"

    def __init__(self, product_id: int, message: str | None = None):
        super().__init__(message or f"Product {product_id} is no longer available")
        self.product_id = product_id


class InsufficientStock(ServiceError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: int, product_name: str | None = None):
        label = f'"{product_name}"' if product_name else str(product_id)
        super().__init__(f"Insufficient stock for product {label}")
        self.product_id = product_id


class OrderNotFound(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class Unauthorized(ServiceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHORIZED"


class Forbidden(ServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"


class PaymentNotConfirmed(ServiceError):
    code = "PAYMENT_NOT_CONFIRMED"


class InvalidTransition(ServiceError):
    code = "INVALID_TRANSITION"


class ProviderCommunicationError(ServiceError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "PROVIDER_COMMUNICATION_ERROR"


class SignatureInvalid(ServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "SIGNATURE_INVALID"


class UnsupportedProvider(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "UNSUPPORTED_PROVIDER"


class ConcurrentUpdate(ServiceError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONCURRENT_UPDATE"


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, code=exc.code, detail=exc.message)
    else:
        logger.info("request_rejected", path=request.url.path, code=exc.code, detail=exc.message)

    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "detail": exc.message},
        headers=headers,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Malformed bodies are plain 400s with the same envelope as every other rejection
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    detail = f"{location}: {first.get('msg')}" if location else str(first.get("msg", "Invalid request"))
    logger.info("request_rejected", path=request.url.path, code=ValidationError.code, detail=detail)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": ValidationError.code, "detail": detail},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
