"""应用异常处理注册。"""

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from credkeeper.core.errors import (
    AccountLocked,
    AuthError,
    ConflictError,
    InvalidCredentials,
    NotFoundError,
    PermissionDeniedError,
    ServiceUnavailableError,
    TokenInvalid,
    ValidationError,
)
from credkeeper.core.security import UnauthorizedError
from credkeeper.schemas.common import ErrorResponse

logger = logging.getLogger("credkeeper.api")

DEFAULT_ERROR_MESSAGE = "internal server error"

_STATUS_BY_ERROR: dict[type[AuthError], int] = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    InvalidCredentials: status.HTTP_401_UNAUTHORIZED,
    TokenInvalid: status.HTTP_401_UNAUTHORIZED,
    UnauthorizedError: status.HTTP_401_UNAUTHORIZED,
    PermissionDeniedError: status.HTTP_403_FORBIDDEN,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    AccountLocked: status.HTTP_423_LOCKED,
    ServiceUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for_error(exc: AuthError) -> int:
    """按错误类型映射协议状态码，未知子类按 400 处理。"""
    for error_type in type(exc).__mro__:
        if error_type in _STATUS_BY_ERROR:
            return _STATUS_BY_ERROR[error_type]
    return status.HTTP_400_BAD_REQUEST


def _default_http_error_code(status_code: int) -> str:
    if status_code == status.HTTP_400_BAD_REQUEST:
        return "BAD_REQUEST"
    if status_code == status.HTTP_401_UNAUTHORIZED:
        return "UNAUTHORIZED"
    if status_code == status.HTTP_403_FORBIDDEN:
        return "FORBIDDEN"
    if status_code == status.HTTP_404_NOT_FOUND:
        return "NOT_FOUND"
    if status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
        return "METHOD_NOT_ALLOWED"
    return "HTTP_ERROR"


async def auth_error_handler(request: Request, exc: AuthError):
    """将认证领域错误包装为标准错误结构。"""
    status_code = status_for_error(exc)
    details = {"status_code": status_code, "reason": exc.code.lower(), **exc.details}
    headers = None
    if isinstance(exc, AccountLocked):
        headers = {"Retry-After": str(exc.remaining_seconds)}
    elif status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse.wrap(request, exc.code, exc.message, **details),
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    """将协议异常统一包装为标准错误结构。"""
    message = exc.detail if isinstance(exc.detail, str) else "请求处理失败。"
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse.wrap(
            request,
            _default_http_error_code(exc.status_code),
            message,
            status_code=exc.status_code,
        ),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """统一处理请求参数校验错误。"""
    normalized_errors = [
        {
            "field": ".".join(str(item) for item in err.get("loc", []) if item != "body"),
            "message": err.get("msg"),
            "type": err.get("type"),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
        content=ErrorResponse.wrap(
            request,
            "VALIDATION_ERROR",
            "请求参数校验失败。",
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            reason="validation_error",
            errors=normalized_errors,
        ),
    )


async def unexpected_exception_handler(request: Request, exc: Exception):
    """处理未捕获异常，避免内部细节泄露。"""
    logger.error("unhandled exception path=%s", request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse.wrap(
            request,
            "INTERNAL_ERROR",
            DEFAULT_ERROR_MESSAGE,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            reason="unexpected_exception",
        ),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """集中注册异常处理器。"""
    app.exception_handler(AuthError)(auth_error_handler)
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(Exception)(unexpected_exception_handler)
