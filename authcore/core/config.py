# authcore/core/config.py
from functools import lru_cache
from pathlib import Path

from loguru import logger
from pydantic import field_validator
from pydantic_settings import BaseSettings

BASE_DIR = Path(__file__).resolve().parent.parent.parent
ENV_FILE_PATH = BASE_DIR / ".env"

SECRET_KEY_MIN_LENGTH = 32


class Settings(BaseSettings):
    """
    Configuração imutável do processo.

    Construída uma única vez por `get_settings()` e injetada no TokenCodec,
    no hasher de senhas, nos rate limiters e no CredentialService.
    """

    # Core
    DATABASE_URL: str
    DB_TIMEOUT_SECONDS: float = 5.0
    DB_POOL_TIMEOUT_SECONDS: float = 10.0
    # Cria as tabelas no startup (dev/testes). Em produção use Alembic
    DB_CREATE_SCHEMA: bool = False

    SECRET_KEY: str
    ALGORITHM: str = "HS256"

    # --- Tokens ---
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 30
    REFRESH_TOKEN_BYTES: int = 32  # 256 bits -> 64 caracteres hex

    # Claims compartilhados por quem assina e quem verifica.
    # Alterar qualquer um invalida todos os access tokens emitidos.
    JWT_ISSUER: str = "urn:authcore:api"
    JWT_AUDIENCE: str = "urn:authcore:client"
    AUTH_HEADER_SCHEME: str = "Bearer"
    # --- Fim Tokens ---

    # --- Argon2id (custos fixos para todo o processo) ---
    ARGON2_MEMORY_COST: int = 16384  # KiB (16MB)
    ARGON2_TIME_COST: int = 3
    ARGON2_PARALLELISM: int = 1
    # --- Fim Argon2id ---

    # --- Rate limiting ---
    # Sem REDIS_URL o contador fica em memória (apenas uma instância / dev)
    REDIS_URL: str | None = None
    COUNTER_STORE_TIMEOUT_SECONDS: float = 1.0
    # True = fail-open (libera requisições se o contador cair),
    # False = fail-closed (responde 503 enquanto o contador estiver fora)
    RATE_LIMIT_FAIL_OPEN: bool = True

    REGISTER_RATE_LIMIT: int = 20
    REGISTER_RATE_LIMIT_WINDOW_SECONDS: int = 60
    LOGIN_RATE_LIMIT: int = 10
    LOGIN_RATE_LIMIT_WINDOW_SECONDS: int = 60
    REFRESH_RATE_LIMIT: int = 50
    REFRESH_RATE_LIMIT_WINDOW_SECONDS: int = 60
    # --- Fim Rate limiting ---

    # Chave de API Interna (endpoints /mgmt)
    INTERNAL_API_KEY: str | None = None

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    CORS_ORIGINS: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://localhost:8000",
    ]

    @field_validator("SECRET_KEY")
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        if len(v) < SECRET_KEY_MIN_LENGTH:
            raise ValueError(f"SECRET_KEY deve ter pelo menos {SECRET_KEY_MIN_LENGTH} caracteres")
        return v

    @property
    def access_token_ttl_seconds(self) -> int:
        return self.ACCESS_TOKEN_EXPIRE_MINUTES * 60

    class Config:
        case_sensitive = True
        frozen = True
        env_file = ENV_FILE_PATH
        env_file_encoding = 'utf-8'


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()
    except Exception as e:
        logger.error(f"FATAL: Erro ao carregar 'settings' a partir do .env em {ENV_FILE_PATH}: {e}")
        raise e
