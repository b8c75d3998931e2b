# authcore/api/dependencies.py
import secrets  # Importar secrets para comparação segura
import uuid
from typing import Awaitable, Callable

from fastapi import Depends, HTTPException, Request, Response, status
from fastapi.security import APIKeyHeader
from loguru import logger
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from authcore.core.config import Settings
from authcore.core.exceptions import (
    AuthCoreError,
    ForbiddenError,
    InvalidAccessTokenError,
    InvalidTokenFormatError,
    MissingTokenError,
    RateLimitExceededError,
    UserNotFoundError,
)
from authcore.core.security import TokenCodec, extract_token_from_header
from authcore.db.session import get_db
from authcore.models.user import UserRole
from authcore.schemas.token import AccessTokenClaims
from authcore.schemas.user import UserRead
from authcore.services.credential_service import CredentialService
from authcore.services.rate_limiter import RateLimitResult


# --- Componentes montados uma vez em create_app ---
def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_token_codec(request: Request) -> TokenCodec:
    return request.app.state.token_codec


def get_credential_service(request: Request) -> CredentialService:
    return request.app.state.credential_service
# --- Fim ---


# O esquema "Bearer" é comparado de forma exata por extract_token_from_header,
# por isso não usamos OAuth2PasswordBearer (que aceita "bearer" em qualquer caixa)
bearer_header_scheme = APIKeyHeader(
    name="Authorization",
    auto_error=False,
    description="Access token no formato: Bearer <token>",
)


async def get_current_claims(
    authorization: str | None = Depends(bearer_header_scheme),
    settings: Settings = Depends(get_app_settings),
    codec: TokenCodec = Depends(get_token_codec),
) -> AccessTokenClaims:
    if not authorization:
        raise MissingTokenError()
    token = extract_token_from_header(authorization, settings.AUTH_HEADER_SCHEME)
    if token is None:
        raise InvalidTokenFormatError()
    return codec.verify_access_token(token)


async def get_optional_claims(
    authorization: str | None = Depends(bearer_header_scheme),
    settings: Settings = Depends(get_app_settings),
    codec: TokenCodec = Depends(get_token_codec),
) -> AccessTokenClaims | None:
    """
    Autenticação opcional: sem header, header malformado ou token inválido
    a requisição segue como anônima (None) em vez de falhar.
    """
    token = extract_token_from_header(authorization, settings.AUTH_HEADER_SCHEME)
    if token is None:
        return None
    try:
        return codec.verify_access_token(token)
    except AuthCoreError as e:
        logger.debug(f"Autenticação opcional falhou, seguindo como anônimo: {e.code}")
        return None


def require_roles(*roles: UserRole) -> Callable[..., Awaitable[AccessTokenClaims]]:
    """Dependência que exige um access token válido com um dos papéis informados (403 caso contrário)."""
    allowed = [role.value for role in roles]

    async def dependency(
        request: Request,
        claims: AccessTokenClaims = Depends(get_current_claims),
    ) -> AccessTokenClaims:
        if claims.role not in allowed:
            logger.warning(
                f"Autorização negada: user_id={claims.sub} role={claims.role} exigido={allowed} path={request.url.path}"
            )
            raise ForbiddenError(required_roles=allowed, role=claims.role)
        return claims

    return dependency


async def get_current_user_id(claims: AccessTokenClaims = Depends(get_current_claims)) -> uuid.UUID:
    try:
        return uuid.UUID(claims.sub)
    except ValueError:
        raise InvalidAccessTokenError()


async def get_current_active_user(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    service: CredentialService = Depends(get_credential_service),
) -> UserRead:
    # Usuário removido/desativado depois da emissão do token
    user = await service.find_user_by_id(db, user_id=user_id)
    if user is None:
        raise UserNotFoundError()
    return user


def rate_limit(purpose: str) -> Callable[..., Awaitable[RateLimitResult]]:
    """Dependência que aplica o rate limiter configurado para `purpose` por IP de cliente."""

    async def dependency(request: Request, response: Response) -> RateLimitResult:
        limiter = request.app.state.rate_limiters[purpose]
        result = await limiter.hit(get_remote_address(request))
        if not result.allowed:
            raise RateLimitExceededError(result)
        for name, value in result.headers().items():
            response.headers[name] = value
        return result

    return dependency


# --- DEPENDÊNCIA DA CHAVE DE API (X-API-Key) ---
api_key_header_scheme = APIKeyHeader(name="X-API-Key")

async def get_api_key(
    api_key: str = Depends(api_key_header_scheme),
    settings: Settings = Depends(get_app_settings),
) -> str:
    """
    Verifica se a X-API-Key enviada no header é válida.
    """
    if not settings.INTERNAL_API_KEY:
        # Erro de configuração: a chave nem está configurada no servidor
        logger.error("Requisição /mgmt recusada: INTERNAL_API_KEY não configurada")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="INTERNAL_API_KEY is not configured on the server",
        )
    # Compara as chaves de forma segura para evitar timing attacks
    if not secrets.compare_digest(api_key, settings.INTERNAL_API_KEY):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
    return api_key
# --- FIM DEPENDÊNCIA DA CHAVE DE API ---
