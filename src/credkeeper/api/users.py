"""账号管理接口（仅管理员）。"""

from fastapi import APIRouter, Depends, Request, status

from credkeeper.core.errors import ValidationError
from credkeeper.core.security import AuthenticatedPrincipal
from credkeeper.dependencies import get_auth_service, require_admin
from credkeeper.schemas.auth import AccountData
from credkeeper.schemas.common import ErrorResponse, OperationData, SuccessResponse
from credkeeper.services.auth import AuthService

router = APIRouter(prefix="/users", tags=["users"])


@router.get(
    "",
    summary="查询账号列表",
    description="按创建时间升序返回全部账号。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[list[AccountData]],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
def list_users(
    request: Request,
    _admin: AuthenticatedPrincipal = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
):
    """列出全部账号。"""
    accounts = service.list_accounts()
    data = [AccountData.model_validate(account).model_dump() for account in accounts]
    return SuccessResponse.wrap(request, data, total=len(data))


@router.delete(
    "/{user_id}",
    summary="删除账号",
    description="删除账号并级联删除其全部刷新会话；不允许删除自己。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[OperationData],
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def delete_user(
    user_id: int,
    request: Request,
    admin: AuthenticatedPrincipal = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
):
    """删除指定账号。"""
    if user_id == admin.user_id:
        raise ValidationError("不能删除当前登录的管理员账号。", field="user_id")
    service.delete_account(user_id)
    return SuccessResponse.wrap(request, {"ok": True})
