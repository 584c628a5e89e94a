"""
数据库连接管理：异步引擎、会话工厂与健康检查
"""
from typing import Any, Dict

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from core.config import settings
from infrastructure.models import Base


_ASYNC_DRIVERS = {
    "postgresql": "postgresql+asyncpg",
    "postgres": "postgresql+asyncpg",
    "sqlite": "sqlite+aiosqlite",
}


def _build_async_url(database_url: str) -> str:
    """把同步驱动名换成对应的异步驱动；已带驱动的URL原样返回"""
    url = make_url(database_url)
    if "+" in url.drivername:
        return database_url
    if url.drivername not in _ASYNC_DRIVERS:
        raise ValueError(f"不支持的数据库驱动: {url.drivername}. 请使用 async 驱动或更新 DATABASE__URL")
    return url.set(drivername=_ASYNC_DRIVERS[url.drivername]).render_as_string(hide_password=False)


def _engine_options(async_url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": settings.database.echo}
    if make_url(async_url).get_backend_name() != "sqlite":
        # 台账写入依赖短事务，连接失效时尽早发现
        options.update(pool_pre_ping=True, pool_size=settings.database.pool_size)
    return options


_async_url = _build_async_url(settings.database.url)
engine = create_async_engine(_async_url, **_engine_options(_async_url))

AsyncSessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False)


async def ping() -> bool:
    """健康检查：数据库可达返回 True"""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    return True


async def create_tables():
    """创建台账表（仅开发环境；生产使用 alembic upgrade head）"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
