"""数据库引擎与请求级会话。

引擎按连接地址懒加载并缓存，连接地址来自注入的 ``Settings``，
导入本模块不会建立任何连接，也不要求加载数据库驱动。
"""

from collections.abc import Generator
from functools import lru_cache

from fastapi import Depends
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from credkeeper.core.config import Settings, get_settings


def build_engine(database_url: str) -> Engine:
    """按连接地址创建引擎；SQLite 需允许跨线程使用同一连接。"""
    if database_url.startswith("sqlite"):
        return create_engine(database_url, future=True, connect_args={"check_same_thread": False})
    # 开启连接预检查，账号与会话表读写频繁，避免拿到失效连接。
    return create_engine(database_url, future=True, pool_pre_ping=True)


@lru_cache
def session_factory(database_url: str) -> sessionmaker[Session]:
    """同一连接地址复用一个引擎与会话工厂。"""
    return sessionmaker(bind=build_engine(database_url), autoflush=False, autocommit=False, class_=Session)


def get_db(settings: Settings = Depends(get_settings)) -> Generator[Session, None, None]:
    """为每个请求提供独立会话；提交与回滚由 ``AuthService`` 负责。"""
    db = session_factory(settings.database_url)()
    try:
        yield db
    finally:
        db.close()
