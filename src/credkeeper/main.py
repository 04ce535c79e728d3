"""FastAPI 应用入口点。"""

import logging

from fastapi import FastAPI

from credkeeper import __version__
from credkeeper.api.router import api_router
from credkeeper.core.config import get_settings
from credkeeper.exceptions import register_exception_handlers
from credkeeper.middlewares import register_middlewares


def _setup_logging(level: str) -> None:
    """初始化日志输出格式与级别。"""
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app() -> FastAPI:
    """创建并配置 FastAPI 应用实例。"""
    settings = get_settings()
    _setup_logging(settings.log_level)

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        debug=settings.app_debug,
        description=(
            "账号认证与登录会话管理接口。\n\n"
            "所有业务接口统一返回：`{request_id, data, meta}`。\n"
            "访问令牌为短期无状态令牌；刷新令牌一次性使用，每次刷新都会轮换。"
        ),
        openapi_tags=[
            {"name": "health", "description": "服务存活与就绪探针。"},
            {"name": "auth", "description": "注册、登录、令牌轮换与会话管理。"},
            {"name": "users", "description": "账号管理（仅管理员）。"},
        ],
    )

    register_middlewares(app)
    register_exception_handlers(app)
    app.include_router(api_router, prefix=settings.api_prefix)
    return app


app = create_app()
