# authcore/api/endpoints/auth.py
import uuid
from typing import Any, Optional

from fastapi import APIRouter, Depends, status
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from authcore.api.dependencies import (
    get_credential_service,
    get_current_active_user,
    get_current_user_id,
    get_optional_claims,
    rate_limit,
)
from authcore.core.exceptions import InvalidCredentialsError, InvalidRequestError
from authcore.db.session import get_db
from authcore.schemas.token import AccessTokenClaims, LogoutRequest, RefreshTokenRequest, TokenPair
from authcore.schemas.user import (
    AuthData,
    Envelope,
    LoginRequest,
    MessageData,
    RevokedSessionsData,
    SessionData,
    UserCreate,
    UserData,
    UserRead,
)
from authcore.services.credential_service import CredentialService

router = APIRouter()


def auth_data(user: UserRead, tokens: TokenPair) -> AuthData:
    return AuthData(
        user=user,
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_in=tokens.expires_in,
    )


@router.post(
    "/register",
    response_model=Envelope[AuthData],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("register"))],
)
async def register(
    *,
    db: AsyncSession = Depends(get_db),
    user_in: UserCreate,
    service: CredentialService = Depends(get_credential_service),
) -> Any:
    """
    Cria a conta e já devolve o par de tokens (registro = login automático).
    409 quando email/telefone já existem.
    """
    user = await service.create_user(db, obj_in=user_in)
    tokens = await service.generate_token_pair(db, user=user)
    return Envelope(data=auth_data(user, tokens))


@router.post(
    "/login",
    response_model=Envelope[AuthData],
    dependencies=[Depends(rate_limit("login"))],
)
async def login(
    *,
    db: AsyncSession = Depends(get_db),
    credentials: LoginRequest,
    service: CredentialService = Depends(get_credential_service),
) -> Any:
    """
    Login com email ou telefone + senha.

    Conta inexistente e senha errada devolvem a MESMA resposta (evita enumeração).
    """
    user = await service.verify_credentials(db, identifier=credentials.identifier, password=credentials.password)
    if user is None:
        raise InvalidCredentialsError()
    tokens = await service.generate_token_pair(db, user=user)
    return Envelope(data=auth_data(user, tokens))


@router.post(
    "/refresh",
    response_model=Envelope[AuthData],
    dependencies=[Depends(rate_limit("refresh"))],
)
async def refresh_access_token(
    *,
    db: AsyncSession = Depends(get_db),
    refresh_request: RefreshTokenRequest,
    service: CredentialService = Depends(get_credential_service),
) -> Any:
    """
    Troca o refresh token por um par novo. O token apresentado deixa de valer.
    Reapresentar um token já usado derruba todas as sessões do usuário (403).
    """
    result = await service.refresh_access_token(db, presented_token=refresh_request.refresh_token)
    return Envelope(data=auth_data(result.user, result.tokens))


@router.post("/logout", response_model=Envelope[MessageData])
async def logout(
    *,
    db: AsyncSession = Depends(get_db),
    logout_request: LogoutRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: CredentialService = Depends(get_credential_service),
) -> Any:
    """
    Invalida o refresh token informado. O access token continua válido até
    expirar (no máximo 15 minutos).
    """
    if not logout_request.refresh_token:
        raise InvalidRequestError()
    # Idempotente: um token já invalidado (ou de outro usuário) não é erro
    await service.invalidate_refresh_token(db, token=logout_request.refresh_token, user_id=user_id)
    logger.info(f"Usuário fez logout: user_id={user_id}")
    return Envelope(data=MessageData(message="Logged out successfully"))


@router.post("/logout-all", response_model=Envelope[RevokedSessionsData])
async def logout_everywhere(
    *,
    db: AsyncSession = Depends(get_db),
    current_user: UserRead = Depends(get_current_active_user),
    service: CredentialService = Depends(get_credential_service),
) -> Any:
    """Encerra todas as sessões (refresh tokens vivos) do usuário logado."""
    count = await service.invalidate_all_user_tokens(db, user_id=current_user.id)
    return Envelope(data=RevokedSessionsData(revoked_sessions=count))


@router.get("/me", response_model=Envelope[UserData])
async def read_users_me(current_user: UserRead = Depends(get_current_active_user)) -> Any:
    return Envelope(data=UserData(user=current_user))


@router.get("/session", response_model=Envelope[SessionData])
async def read_session(claims: Optional[AccessTokenClaims] = Depends(get_optional_claims)) -> Any:
    """
    Estado da sessão sem exigir login: token ausente ou inválido responde
    authenticated=false em vez de 401.
    """
    if claims is None:
        return Envelope(data=SessionData(authenticated=False))
    return Envelope(data=SessionData(authenticated=True, user_id=claims.sub, role=claims.role))
