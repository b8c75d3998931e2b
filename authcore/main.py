# authcore/main.py
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncEngine

from authcore.api.dependencies import get_api_key, require_roles
from authcore.api.endpoints import auth, mgmt
from authcore.api.error_handling import register_error_handlers
from authcore.core.config import Settings, get_settings
from authcore.core.logging import configure_logging
from authcore.core.security import Argon2PasswordHasher, TokenCodec
from authcore.db.initial_data import create_schema
from authcore.db.session import build_engine, build_session_factory
from authcore.models.user import UserRole
from authcore.services.credential_service import CredentialService
from authcore.services.rate_limiter import build_counter_store, build_rate_limiters

API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = app.state.settings
    if settings.DB_CREATE_SCHEMA:
        await create_schema(app.state.engine)
        logger.info("Tabelas criadas a partir do metadata (DB_CREATE_SCHEMA=True)")
    logger.info("Auth API pronta")
    try:
        yield
    finally:
        logger.info("Shutting down: fechando contador de rate limit e engine do banco...")
        await app.state.counter_store.close()
        await app.state.engine.dispose()
        logger.info("Database engine disposed.")


def create_app(settings: Optional[Settings] = None, engine: Optional[AsyncEngine] = None) -> FastAPI:
    """
    Monta a aplicação: componentes são construídos uma vez aqui e guardados em
    app.state; as dependências em authcore.api.dependencies os leem de lá.
    """
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title="Auth API",
        description="Núcleo de sessão e credenciais: registro, login, refresh com rotação e logout",
        version="1.0.0",
        lifespan=lifespan,
    )

    engine = engine or build_engine(settings)
    codec = TokenCodec(settings)
    hasher = Argon2PasswordHasher(settings)
    counter_store = build_counter_store(settings)

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.token_codec = codec
    app.state.password_hasher = hasher
    app.state.credential_service = CredentialService(settings, codec, hasher)
    app.state.counter_store = counter_store
    app.state.rate_limiters = build_rate_limiters(settings, counter_store)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    # --- Router de Autenticação ---
    # register/login/refresh são públicos (com rate limit);
    # logout, logout-all e /me exigem Bearer token
    app.include_router(auth.router, prefix=f"{API_PREFIX}/auth", tags=["Authentication"])

    # --- Router de Gerenciamento ---
    # Protegido APENAS pela chave de API
    app.include_router(
        mgmt.router,
        prefix=f"{API_PREFIX}/mgmt",
        tags=["Management"],
        dependencies=[Depends(get_api_key)],
    )

    # --- Router de Administração ---
    # Protegido por Bearer token com role=admin
    app.include_router(
        mgmt.admin_router,
        prefix=f"{API_PREFIX}/admin",
        tags=["Administration"],
        dependencies=[Depends(require_roles(UserRole.ADMIN))],
    )

    @app.get("/")
    def read_root():
        return {"message": "Auth API is running!"}

    return app
