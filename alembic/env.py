# alembic/env.py
import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection

from authcore import models  # noqa: F401  (registra as tabelas em Base.metadata)
from authcore.core.config import get_settings
from authcore.db.base import Base
from authcore.db.session import build_engine

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# A URL vem sempre de DATABASE_URL; o alembic.ini não guarda credenciais
settings = get_settings()
config.set_main_option("sqlalchemy.url", settings.DATABASE_URL)


def _configure(**kwargs) -> None:
    # compare_type: detecta mudanças como String(64) -> String(128) no autogenerate
    context.configure(target_metadata=Base.metadata, compare_type=True, **kwargs)
    with context.begin_transaction():
        context.run_migrations()


def migrate_offline() -> None:
    """`alembic upgrade head --sql`: só gera o SQL, sem abrir conexão."""
    _configure(
        url=settings.DATABASE_URL,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )


def _migrate_with(connection: Connection) -> None:
    # SQLite não altera constraints in-place; batch recria a tabela
    _configure(connection=connection, render_as_batch=connection.dialect.name == "sqlite")


async def migrate_online() -> None:
    # Mesma engine da aplicação (timeouts de driver inclusos), sem pool
    engine = build_engine(settings, poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate_with)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    migrate_offline()
else:
    asyncio.run(migrate_online())
