# authcore/db/initial_data.py
import asyncio
import sys

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncEngine

from authcore.core.config import get_settings
from authcore.db.base import Base
from authcore.db.session import build_engine
# Importar TODOS os modelos para que Base.metadata os conheça
from authcore import models  # noqa: F401


async def create_schema(engine: AsyncEngine, *, drop_existing: bool = False) -> None:
    async with engine.begin() as conn:
        if drop_existing:
            logger.info("Removendo todas as tabelas existentes (se houver)...")
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


async def init_db(drop_existing: bool = False) -> None:
    """Cria as tabelas direto do metadata (dev/testes; produção usa Alembic)."""
    logger.info("Iniciando a criação do banco de dados...")
    engine = build_engine(get_settings())
    try:
        await create_schema(engine, drop_existing=drop_existing)
        logger.info("Tabelas criadas com sucesso.")
    finally:
        # Garante que a engine seja descartada corretamente ao final
        await engine.dispose()


if __name__ == "__main__":
    try:
        asyncio.run(init_db(drop_existing="--drop" in sys.argv[1:]))
    except Exception:
        logger.exception("Ocorreu um erro durante a inicialização do banco de dados")
        sys.exit(1)
