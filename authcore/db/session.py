# authcore/db/session.py
from typing import Any, AsyncGenerator, Dict

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from authcore.core.config import Settings


def driver_connect_args(settings: Settings) -> Dict[str, Any]:
    """Timeouts por driver: nenhuma chamada ao banco pode bloquear indefinidamente."""
    url = settings.DATABASE_URL
    if url.startswith("postgresql+asyncpg"):
        return {
            "timeout": settings.DB_TIMEOUT_SECONDS,
            "command_timeout": settings.DB_TIMEOUT_SECONDS,
        }
    if url.startswith("sqlite+aiosqlite"):
        return {"timeout": settings.DB_TIMEOUT_SECONDS}
    return {}


def build_engine(settings: Settings, **kwargs: Any) -> AsyncEngine:
    # O usuário é responsável por fornecer o driver async correto na URL
    # Ex: "postgresql+asyncpg://...", "sqlite+aiosqlite:///..."
    engine_kwargs: Dict[str, Any] = {
        "pool_pre_ping": True,
        "echo": False,  # Change to True to see SQL logs
        "connect_args": driver_connect_args(settings),
    }
    if not settings.DATABASE_URL.startswith("sqlite"):
        engine_kwargs["pool_timeout"] = settings.DB_POOL_TIMEOUT_SECONDS
    engine_kwargs.update(kwargs)
    return create_async_engine(settings.DATABASE_URL, **engine_kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# A engine é criada por aplicação (create_app) e guardada em app.state
async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    SessionLocal: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with SessionLocal() as db:
        yield db
