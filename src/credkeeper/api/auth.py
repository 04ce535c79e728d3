"""认证与会话接口。"""

from fastapi import APIRouter, Depends, Request, status

from credkeeper.core.security import AuthenticatedPrincipal
from credkeeper.dependencies import get_auth_service, get_client_descriptor, get_current_principal
from credkeeper.models.user import UserAccount
from credkeeper.schemas.auth import (
    AccountData,
    ChangeEmailRequest,
    ChangePasswordRequest,
    LoginRequest,
    LogoutAllData,
    LogoutRequest,
    RefreshRequest,
    RegisterRequest,
    SessionData,
    TokenData,
)
from credkeeper.schemas.common import ErrorResponse, OperationData, SuccessResponse
from credkeeper.services.auth import AuthResult, AuthService

router = APIRouter(prefix="/auth", tags=["auth"])


def _account_data(account: UserAccount) -> dict:
    return AccountData.model_validate(account).model_dump()


def _token_data(result: AuthResult) -> dict:
    return {
        "account": _account_data(result.account),
        "access_token": result.access_token.token,
        "token_type": "bearer",
        "expires_at": result.access_token.expires_at,
        "expires_in": result.access_token.expires_in,
        "refresh_token": result.refresh_token,
    }


@router.post(
    "/register",
    summary="注册账号",
    description="创建账号并直接返回访问令牌；系统中的首个账号自动成为管理员。",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessResponse[TokenData],
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
def register(
    payload: RegisterRequest,
    request: Request,
    service: AuthService = Depends(get_auth_service),
):
    """注册账号（自动登录，不创建刷新会话）。"""
    result = service.register(payload.username, payload.email, payload.password)
    return SuccessResponse.wrap(request, _token_data(result))


@router.post(
    "/login",
    summary="口令登录",
    description="使用邮箱密码登录，返回访问令牌与刷新令牌。连续失败达到阈值后账号被临时锁定。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[TokenData],
    responses={401: {"model": ErrorResponse}, 423: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
def login(
    payload: LoginRequest,
    request: Request,
    service: AuthService = Depends(get_auth_service),
    client_descriptor: str | None = Depends(get_client_descriptor),
):
    """口令登录并创建刷新会话。"""
    result = service.login(payload.email, payload.password, client_descriptor)
    return SuccessResponse.wrap(request, _token_data(result))


@router.post(
    "/refresh",
    summary="轮换刷新令牌",
    description="用刷新令牌换取新的访问令牌与刷新令牌；旧刷新令牌立即失效且只能兑换一次。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[TokenData],
    responses={401: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
def refresh(
    payload: RefreshRequest,
    request: Request,
    service: AuthService = Depends(get_auth_service),
    client_descriptor: str | None = Depends(get_client_descriptor),
):
    """轮换刷新令牌。"""
    result = service.refresh(payload.refresh_token, client_descriptor)
    return SuccessResponse.wrap(request, _token_data(result))


@router.post(
    "/logout",
    summary="登出当前会话",
    description="撤销指定刷新令牌；重复登出不报错。已签发的访问令牌在过期前仍然有效。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[OperationData],
    responses={503: {"model": ErrorResponse}},
)
def logout(
    payload: LogoutRequest,
    request: Request,
    service: AuthService = Depends(get_auth_service),
):
    """撤销刷新令牌。"""
    service.logout(payload.refresh_token)
    return SuccessResponse.wrap(request, {"ok": True})


@router.post(
    "/logout-all",
    summary="全端登出",
    description="撤销当前用户全部有效刷新会话。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[LogoutAllData],
    responses={401: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
def logout_all(
    request: Request,
    principal: AuthenticatedPrincipal = Depends(get_current_principal),
    service: AuthService = Depends(get_auth_service),
):
    """撤销当前用户全部会话。"""
    revoked = service.logout_all(principal.user_id)
    return SuccessResponse.wrap(request, {"revoked": revoked})


@router.get(
    "/me",
    summary="获取当前账号",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AccountData],
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def me(
    request: Request,
    principal: AuthenticatedPrincipal = Depends(get_current_principal),
    service: AuthService = Depends(get_auth_service),
):
    """返回当前令牌对应的账号最新信息。"""
    account = service.get_account(principal.user_id)
    return SuccessResponse.wrap(request, _account_data(account))


@router.get(
    "/sessions",
    summary="查询登录会话",
    description="按创建时间倒序列出当前用户的有效会话，不返回令牌或其摘要。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[list[SessionData]],
    responses={401: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
def list_sessions(
    request: Request,
    principal: AuthenticatedPrincipal = Depends(get_current_principal),
    service: AuthService = Depends(get_auth_service),
):
    """列出当前用户有效会话。"""
    sessions = service.list_sessions(principal.user_id)
    return SuccessResponse.wrap(request, [SessionData.model_validate(item).model_dump() for item in sessions])


@router.delete(
    "/sessions/{session_id}",
    summary="撤销指定会话",
    description="仅能撤销属于当前用户的会话；他人会话与不存在的会话统一返回 404。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[OperationData],
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def revoke_session(
    session_id: int,
    request: Request,
    principal: AuthenticatedPrincipal = Depends(get_current_principal),
    service: AuthService = Depends(get_auth_service),
):
    """撤销当前用户的指定会话。"""
    service.revoke_session(session_id, principal.user_id)
    return SuccessResponse.wrap(request, {"ok": True})


@router.post(
    "/password",
    summary="修改密码",
    description="需校验当前密码；修改后不会自动撤销已有会话，如需请调用全端登出。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[OperationData],
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def change_password(
    payload: ChangePasswordRequest,
    request: Request,
    principal: AuthenticatedPrincipal = Depends(get_current_principal),
    service: AuthService = Depends(get_auth_service),
):
    """修改当前用户密码。"""
    service.change_password(principal.user_id, payload.current_password, payload.new_password)
    return SuccessResponse.wrap(request, {"ok": True})


@router.post(
    "/email",
    summary="修改邮箱",
    description="需校验当前密码；新邮箱已被其他账号使用时返回 409。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[OperationData],
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
def change_email(
    payload: ChangeEmailRequest,
    request: Request,
    principal: AuthenticatedPrincipal = Depends(get_current_principal),
    service: AuthService = Depends(get_auth_service),
):
    """修改当前用户邮箱。"""
    service.change_email(principal.user_id, payload.current_password, payload.new_email)
    return SuccessResponse.wrap(request, {"ok": True})
