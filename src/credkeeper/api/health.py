"""存活与就绪探针。"""

from fastapi import APIRouter, Depends, Request, status
from pydantic import Field

from credkeeper.core.config import Settings, get_settings
from credkeeper.dependencies import get_auth_service
from credkeeper.schemas.common import BaseSchema, ErrorResponse, SuccessResponse
from credkeeper.services.auth import AuthService

router = APIRouter(prefix="/health", tags=["health"])


class LivenessData(BaseSchema):
    status: str = Field(default="ok", description="进程状态。")


class ReadinessData(BaseSchema):
    """就绪状态及当前生效的认证策略。"""

    status: str = Field(default="ready", description="就绪状态。")
    accounts: int = Field(description="已注册账号数；为 0 时下一次注册将成为管理员。")
    lockout_threshold: int = Field(description="触发锁定的连续失败次数。")
    lockout_window_seconds: int = Field(description="锁定时长（秒）。")
    access_token_ttl_seconds: int = Field(description="访问令牌有效期（秒）。")
    refresh_token_ttl_days: int = Field(description="刷新令牌有效期（天）。")


@router.get(
    "/live",
    summary="存活探针",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[LivenessData],
)
def live(request: Request):
    """仅表示进程存活，不访问数据库。"""
    return SuccessResponse.wrap(request, {"status": "ok"})


@router.get(
    "/ready",
    summary="就绪探针",
    description="通过统计账号数验证账号表可读；存储不可用时返回 503。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[ReadinessData],
    responses={503: {"model": ErrorResponse}},
)
def ready(
    request: Request,
    service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
):
    """统计账号数并回显认证策略配置。"""
    data = ReadinessData(
        accounts=service.count_accounts(),
        lockout_threshold=settings.auth_lockout_threshold,
        lockout_window_seconds=settings.auth_lockout_window_seconds,
        access_token_ttl_seconds=settings.auth_access_token_ttl_seconds,
        refresh_token_ttl_days=settings.auth_refresh_token_ttl_days,
    )
    return SuccessResponse.wrap(request, data.model_dump())
