"""
Gestionnaires d'exceptions utilisés par la factory.
- HTTPException -> {"error": detail}
- RequestValidationError -> 400 {"error", "details"}
- PaymentProviderError -> 502 {"error", "details"} (ProviderNotFoundError -> 404)
- SignatureError -> 400, ReconciliationError -> 500
- Exception inattendue -> 500 générique (journalisée avec la trace)
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from storefront.payments.errors import (
    PaymentError,
    PaymentProviderError,
    ProviderNotFoundError,
    SignatureError,
)

logger = logging.getLogger(__name__)


def _payment_status(exc: PaymentError) -> int:
    if isinstance(exc, ProviderNotFoundError):
        return 404
    if isinstance(exc, PaymentProviderError):
        return 502
    if isinstance(exc, SignatureError):
        return 400
    return 500


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        details = [
            {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg")}
            for err in exc.errors()
        ]
        return JSONResponse(status_code=400, content={"error": "Requête invalide", "details": details})

    @app.exception_handler(PaymentError)
    async def payment_error(request: Request, exc: PaymentError):
        status_code = _payment_status(exc)
        logger.warning("payments error path=%s status=%s message=%s details=%s", request.url.path, status_code, exc.message, exc.details)
        return JSONResponse(status_code=status_code, content={"error": exc.message, "details": exc.details})

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        logger.exception("Unhandled error path=%s", request.url.path)
        return JSONResponse(status_code=500, content={"error": "Erreur interne du serveur"})
