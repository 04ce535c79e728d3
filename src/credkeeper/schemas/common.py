"""响应包裹结构及其构造。

成功响应为 ``{request_id, data, meta}``，错误响应为 ``{request_id, error}``；
``request_id`` 与耗时由请求中间件写入 ``request.state``。
"""

from datetime import datetime, timezone
from time import perf_counter
from typing import Any, Generic, TypeVar

from fastapi import Request
from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "") or ""


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class BaseSchema(BaseModel):
    """基础结构，开启对象映射能力。"""

    model_config = ConfigDict(from_attributes=True)


class ErrorPayload(BaseSchema):
    """错误主体。"""

    code: str = Field(description="错误码，与认证领域错误类型一一对应。")
    message: str = Field(description="可直接展示的错误信息，不含内部细节。")
    details: dict[str, Any] = Field(default_factory=dict, description="状态码、出错字段、锁定剩余秒数等。")


class ErrorResponse(BaseSchema):
    """统一错误响应。"""

    request_id: str = Field(description="请求追踪 ID。")
    error: ErrorPayload = Field(description="错误主体。")

    @classmethod
    def wrap(cls, request: Request, code: str, message: str, **details: Any) -> dict[str, Any]:
        """构造错误响应体，附带请求方法与路径便于排查。"""
        payload = ErrorPayload(
            code=code,
            message=message,
            details={"method": request.method, "path": request.url.path, "timestamp": _timestamp(), **details},
        )
        return cls(request_id=_request_id(request), error=payload).model_dump(mode="json")


class SuccessResponse(BaseSchema, Generic[T]):
    """统一成功响应。"""

    request_id: str = Field(description="请求追踪 ID。")
    data: T = Field(description="业务数据。")
    meta: dict[str, Any] = Field(default_factory=dict, description="时间戳、处理耗时及列表总数等。")

    @staticmethod
    def wrap(request: Request, data: Any, **meta: Any) -> dict[str, Any]:
        """构造成功响应体；具体类型由路由的 ``response_model`` 校验。"""
        started_at = getattr(request.state, "request_started_at", None)
        process_ms = int((perf_counter() - started_at) * 1000) if isinstance(started_at, float) else None
        return {
            "request_id": _request_id(request),
            "data": data,
            "meta": {"timestamp": _timestamp(), "process_ms": process_ms, **meta},
        }


class OperationData(BaseSchema):
    """无返回主体的操作结果（登出、撤销会话、修改凭据）。"""

    ok: bool = Field(default=True, description="操作是否完成。")
