import asyncio
import logging
import uuid
from typing import Any, Dict, NoReturn, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from kubernetes.client.rest import ApiException
from starlette.exceptions import HTTPException as StarletteHTTPException


logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base error raised from handlers; rendered by the registered exception handlers."""

    status_code = 400
    code = "APP_ERROR"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.details = details or {}


class BadRequestError(AppException):
    status_code = 400
    code = "BAD_REQUEST"


class NotFoundError(AppException):
    status_code = 404
    code = "NOT_FOUND"


class KubernetesAPIError(AppException):
    """Any API-server failure other than 404; the message is passed through verbatim."""

    status_code = 500
    code = "KUBERNETES_API_ERROR"


def raise_for_api_exception(exc: ApiException, *, not_found: str) -> NoReturn:
    """Translate a client ApiException into the matching AppException."""
    if exc.status == 404:
        raise NotFoundError(not_found) from exc
    raise KubernetesAPIError(str(exc)) from exc


def _build_error_payload(
    *,
    message: str,
    status_code: int,
    code: str = "APP_ERROR",
    details: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "success": False,
        "error": {
            "message": message,
            "code": code,
            **({"details": details} if details else {}),
        },
        "request_id": request_id or str(uuid.uuid4()),
        "status_code": status_code,
    }


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the uniform error envelope to the app."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        req_id = _request_id(request)
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        payload = _build_error_payload(message=message, status_code=exc.status_code, code="HTTP_ERROR", request_id=req_id)
        logger.warning("HTTPException: status=%s path=%s request_id=%s", exc.status_code, request.url.path, req_id)
        return JSONResponse(status_code=exc.status_code, content=payload, headers={"X-Request-ID": req_id})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        req_id = _request_id(request)
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"Invalid request body: {location + ': ' if location else ''}{first.get('msg', 'validation failed')}"
        payload = _build_error_payload(
            message=message,
            status_code=400,
            code="VALIDATION_ERROR",
            details={"errors": [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in errors]},
            request_id=req_id,
        )
        logger.info("ValidationError: path=%s errors=%d request_id=%s", request.url.path, len(errors), req_id)
        return JSONResponse(status_code=400, content=payload, headers={"X-Request-ID": req_id})

    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):  # type: ignore[override]
        req_id = _request_id(request)
        payload = _build_error_payload(
            message=exc.message,
            status_code=exc.status_code,
            code=exc.code,
            details=exc.details,
            request_id=req_id,
        )
        logger.warning(
            "AppException: status=%s code=%s path=%s request_id=%s",
            exc.status_code,
            exc.code,
            request.url.path,
            req_id,
        )
        return JSONResponse(status_code=exc.status_code, content=payload, headers={"X-Request-ID": req_id})

    @app.exception_handler(asyncio.TimeoutError)
    async def timeout_exception_handler(request: Request, exc: asyncio.TimeoutError):  # type: ignore[override]
        req_id = _request_id(request)
        logger.warning("Timeout: path=%s request_id=%s", request.url.path, req_id)
        payload = _build_error_payload(
            message="operation timed out",
            status_code=500,
            code="TIMEOUT",
            request_id=req_id,
        )
        return JSONResponse(status_code=500, content=payload, headers={"X-Request-ID": req_id})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):  # type: ignore[override]
        req_id = _request_id(request)
        logger.exception("UnhandledException: path=%s request_id=%s", request.url.path, req_id)
        payload = _build_error_payload(
            message="Internal server error",
            status_code=500,
            code="INTERNAL_SERVER_ERROR",
            request_id=req_id,
        )
        return JSONResponse(status_code=500, content=payload, headers={"X-Request-ID": req_id})
