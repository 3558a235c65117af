"""Error taxonomy and normalized error handlers."""

import logging
from typing import Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from studyhub.core.logging import get_request_id


class ConfigurationError(RuntimeError):
    """Raised when a required setting is missing or invalid."""


class AppError(Exception):
    code = "app_error"
    status_code = 500
    # Message returned to the caller when the internal message must stay server-side.
    public_message: Optional[str] = None

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id

    @property
    def client_message(self) -> str:
        return self.public_message or self.message


class UnauthenticatedError(AppError):
    code = "unauthenticated"
    status_code = 401
    public_message = "Unauthorized"


class PaymentRequiredError(AppError):
    code = "payment_required"
    status_code = 402


class UpstreamUnavailableError(AppError):
    code = "upstream_unavailable"
    status_code = 500
    public_message = "Failed to generate content."


class ContentBlockedError(UpstreamUnavailableError):
    code = "content_blocked"

    def __init__(self, reason: str, **kwargs):
        super().__init__(f"Request was blocked by the AI provider: {reason}", **kwargs)
        self.reason = reason


class EmptyResponseError(UpstreamUnavailableError):
    code = "empty_response"


class SessionCreationFailedError(AppError):
    code = "session_creation_failed"
    status_code = 500
    public_message = "Failed to create payment session."


class SignatureInvalidError(AppError):
    code = "signature_invalid"
    status_code = 400
    public_message = "Webhook signature verification failed."


class MissingSubjectLinkError(AppError):
    code = "missing_subject_link"
    status_code = 400
    public_message = "Missing user ID in session."


class StoreUnavailableError(AppError):
    code = "store_unavailable"
    status_code = 500
    public_message = "Could not verify user status."


class NotFoundError(AppError):
    code = "not_found"
    status_code = 404


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
    payload = _error_payload(exc.code, exc.client_message, rid)
    logger = logging.getLogger("studyhub")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    message = exc.detail if exc.detail else "HTTP error"
    payload = _error_payload(code, message, rid)
    logger = logging.getLogger("studyhub")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def validation_error_handler(request: Request, exc: RequestValidationError):
    rid = _extract_request_id(request)
    payload = _error_payload("validation_error", "Invalid request body", rid)
    payload["errors"] = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg")} for err in exc.errors()
    ]
    logging.getLogger("studyhub").warning("validation.error", extra={"request_id": rid, "error_code": "validation_error", "status": 422})
    response = JSONResponse(status_code=422, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("studyhub")
    logger.error("unhandled.exception", exc_info=exc, extra={"request_id": rid, "error_code": "internal_error"})
    payload = _error_payload("internal_error", "Unexpected error", rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response
