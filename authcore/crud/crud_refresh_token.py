# authcore/crud/crud_refresh_token.py
import hashlib
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from authcore.models.refresh_token import RefreshToken
from authcore.models.user import User


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


async def create_refresh_token(
    db: AsyncSession, *, user_id: uuid.UUID, token: str, created_at: datetime, expires_at: datetime
) -> RefreshToken:
    """Armazena o hash de um novo refresh token (used_at = NULL)."""
    db_token = RefreshToken(
        user_id=user_id,
        token_hash=hash_token(token),
        created_at=created_at,
        expires_at=expires_at,
        used_at=None,
    )
    db.add(db_token)
    await db.commit()
    await db.refresh(db_token)
    return db_token


async def get_refresh_token_with_owner(
    db: AsyncSession, *, token: str
) -> Optional[tuple[RefreshToken, User]]:
    """Busca a linha pelo valor (comparando hashes), junto com o usuário dono."""
    stmt = (
        select(RefreshToken, User)
        .join(User, RefreshToken.user_id == User.id)
        .where(RefreshToken.token_hash == hash_token(token))
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    row = result.first()
    if row is None:
        return None
    return row[0], row[1]


async def consume_refresh_token(db: AsyncSession, *, token_id: uuid.UUID, now: datetime) -> bool:
    """
    Transição atômica viva -> usada.

    O UPDATE condicional só afeta a linha se used_at ainda for NULL no commit;
    de dois resgates concorrentes, exatamente um vê rowcount == 1.
    """
    stmt = (
        update(RefreshToken)
        .where(RefreshToken.id == token_id, RefreshToken.used_at.is_(None))
        .values(used_at=now)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    await db.commit()
    return result.rowcount == 1


async def invalidate_refresh_token(
    db: AsyncSession, *, token: str, now: datetime, user_id: Optional[uuid.UUID] = None
) -> bool:
    """
    Marca um token vivo como usado. Retorna False se já não estava vivo (idempotente).
    Com `user_id`, só afeta o token se ele pertencer a esse usuário.
    """
    conditions = [
        RefreshToken.token_hash == hash_token(token),
        RefreshToken.used_at.is_(None),
        RefreshToken.expires_at > now,
    ]
    if user_id is not None:
        conditions.append(RefreshToken.user_id == user_id)
    stmt = (
        update(RefreshToken)
        .where(*conditions)
        .values(used_at=now)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    await db.commit()
    return result.rowcount > 0


async def invalidate_all_refresh_tokens_for_user(db: AsyncSession, *, user_id: uuid.UUID, now: datetime) -> int:
    """
    Um único UPDATE multi-linha: toda linha do usuário com used_at NULL,
    expirada ou não, passa a usada. Linhas já usadas mantêm o used_at original.
    """
    stmt = (
        update(RefreshToken)
        .where(RefreshToken.user_id == user_id, RefreshToken.used_at.is_(None))
        .values(used_at=now)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    await db.commit()
    return result.rowcount
