# authcore/api/endpoints/mgmt.py
import uuid
from typing import Any

from fastapi import APIRouter, Depends, Path
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from authcore.api.dependencies import get_credential_service
from authcore.core.exceptions import UserNotFoundError
from authcore.crud.crud_user import user as crud_user
from authcore.db.session import get_db
from authcore.models.user import User
from authcore.schemas.user import Envelope, RevokedSessionsData, UserData, UserRead, UserStatusUpdate
from authcore.services.credential_service import CredentialService

router = APIRouter()


async def get_user_by_id(
    db: AsyncSession = Depends(get_db),
    user_id: uuid.UUID = Path(...),
) -> User:
    """
    Dependência que busca um usuário pelo ID, ativo ou não.
    Usado pelos endpoints de /mgmt.
    """
    user = await crud_user.get(db, id=user_id)
    if not user:
        raise UserNotFoundError()
    return user


@router.patch("/users/{user_id}/status", response_model=Envelope[UserData])
async def update_user_status(
    *,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_user_by_id),
    status_in: UserStatusUpdate,
    service: CredentialService = Depends(get_credential_service),
) -> Any:
    """
    Ativa ou desativa uma conta.
    Este endpoint é protegido pela X-API-Key (definido no create_app).

    Desativar também invalida todos os refresh tokens da conta; access tokens
    já emitidos deixam de passar em /me na hora.

    Exemplo de Body:
    {
        "isActive": false
    }
    """
    updated_user = await crud_user.set_active(db, user=user, is_active=status_in.is_active)
    if not status_in.is_active:
        await service.invalidate_all_user_tokens(db, user_id=updated_user.id)
    logger.info(f"Status da conta alterado via /mgmt: user_id={updated_user.id} is_active={status_in.is_active}")
    return Envelope(data=UserData(user=UserRead.model_validate(updated_user)))


@router.post("/users/{user_id}/revoke-sessions", response_model=Envelope[RevokedSessionsData])
async def revoke_user_sessions(
    *,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_user_by_id),
    service: CredentialService = Depends(get_credential_service),
) -> Any:
    """Derruba todas as sessões (refresh tokens vivos) de um usuário."""
    count = await service.invalidate_all_user_tokens(db, user_id=user.id)
    return Envelope(data=RevokedSessionsData(revoked_sessions=count))


# Mesma revogação para administradores logados (Bearer com role=admin), sem X-API-Key
admin_router = APIRouter()
admin_router.add_api_route(
    "/users/{user_id}/revoke-sessions",
    revoke_user_sessions,
    methods=["POST"],
    response_model=Envelope[RevokedSessionsData],
)
