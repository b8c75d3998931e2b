import asyncio
import inspect
import os

# Variáveis mínimas antes de qualquer import que leia Settings
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./authcore_test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.pop("REDIS_URL", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from authcore.core.config import Settings  # noqa: E402
from authcore.core.security import Argon2PasswordHasher, TokenCodec  # noqa: E402
from authcore.db.session import build_engine, build_session_factory  # noqa: E402
from authcore.main import create_app  # noqa: E402
from authcore.services.credential_service import CredentialService  # noqa: E402

INTERNAL_API_KEY = "test-internal-api-key"


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'authcore.db'}",
        SECRET_KEY="test-secret-key-for-testing-only-do-not-use-in-production",
        DB_CREATE_SCHEMA=True,
        REDIS_URL=None,
        INTERNAL_API_KEY=INTERNAL_API_KEY,
        # Custos baixos: os testes não medem o custo do Argon2
        ARGON2_MEMORY_COST=1024,
        ARGON2_TIME_COST=1,
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def db_engine(settings):
    # NullPool: cada teste async roda no seu próprio event loop (asyncio.run)
    return build_engine(settings, poolclass=NullPool)


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def codec(settings) -> TokenCodec:
    return TokenCodec(settings)


@pytest.fixture
def hasher(settings) -> Argon2PasswordHasher:
    return Argon2PasswordHasher(settings)


@pytest.fixture
def service(settings, codec, hasher) -> CredentialService:
    return CredentialService(settings, codec, hasher)


@pytest.fixture
def client(settings):
    app = create_app(settings)
    with TestClient(app) as test_client:
        yield test_client
