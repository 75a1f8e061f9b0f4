"""Error normalization and handlers."""

import logging
from typing import Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from starsgate.core.logging import get_request_id


# User-facing texts. Internal detail goes to the log, never here.
MESSAGES = {
    "auth_invalid": "Не удалось подтвердить авторизацию Telegram",
    "upstream_unavailable": "Не удалось создать счёт для оплаты. Попробуйте позже",
    "webhook_unauthorized": "Forbidden",
    "payment_required": "Доступ к генератору откроется после оплаты",
    "validation_error": "Некорректный запрос",
    "generation_failed": "Не удалось сгенерировать описание. Пожалуйста, попробуйте еще раз.",
    "pre_checkout_rejected": "Этот счёт недействителен. Откройте оплату заново из приложения",
    "internal_error": "Unexpected error",
}


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: Optional[str] = None, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.message = message or MESSAGES.get(self.code, "Unexpected error")
        super().__init__(self.message)
        self.request_id = request_id


class ConfigurationError(RuntimeError):
    """Fatal misconfiguration detected at startup."""


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class AuthInvalidError(AppError):
    """Untrusted or malformed initData envelope.

    The public message is always the generic one, so a caller cannot tell
    which check failed.
    """
    code = "auth_invalid"
    status_code = 401

    def __init__(self, reason: str = "invalid", **kwargs):
        super().__init__(None, **kwargs)
        self.reason = reason


class PaymentRequiredError(AppError):
    code = "payment_required"
    status_code = 402


class WebhookUnauthorizedError(AppError):
    code = "webhook_unauthorized"
    status_code = 403


class UpstreamUnavailableError(AppError):
    code = "upstream_unavailable"
    status_code = 503


class GenerationFailedError(AppError):
    code = "generation_failed"
    status_code = 502


class PayloadIdentityMismatchError(AppError):
    """Settlement payer differs from the identity embedded in the invoice payload."""
    code = "payload_identity_mismatch"
    status_code = 200

    def __init__(self, payer: str, payload_identity: str):
        super().__init__(f"payer {payer} does not match payload identity {payload_identity}")
        self.payer = payer
        self.payload_identity = payload_identity


class InvoicePayloadInvalidError(AppError):
    """Invoice payload is malformed, unsigned or tampered with."""
    code = "invoice_payload_invalid"
    status_code = 200


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str) -> dict:
    return {
        "error": {"code": code, "message": message, "request_id": request_id},
        "detail": message,
    }


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = _error_payload(exc.code, exc.message, rid)
    logger = logging.getLogger("starsgate")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={
            "request_id": rid,
            "error_code": exc.code,
            "error_reason": getattr(exc, "reason", None),
            "status": exc.status_code,
        },
    )
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    message = exc.detail if exc.detail else "HTTP error"
    payload = _error_payload(code, message, rid)
    logger = logging.getLogger("starsgate")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def validation_error_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("starsgate")
    logger.warning("request.invalid", extra={"request_id": rid, "error_code": "validation_error", "status": 400})
    payload = _error_payload("validation_error", MESSAGES["validation_error"], rid)
    response = JSONResponse(status_code=400, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("starsgate")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    payload = _error_payload("internal_error", MESSAGES["internal_error"], rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response
