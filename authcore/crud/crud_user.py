# authcore/crud/crud_user.py
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from authcore.crud.base import CRUDBase
from authcore.models.user import AuthMethod, User, UserRole

# Como cada backend descreve a violação de unicidade:
# Postgres cita o nome da constraint, SQLite cita tabela.coluna
_DUPLICATE_MARKERS = {
    "email": ("uq_users_email", "users.email"),
    "phone": ("uq_users_phone", "users.phone"),
}


def normalize_email(email: Optional[str]) -> Optional[str]:
    if email is None:
        return None
    return email.strip().lower() or None


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    if phone is None:
        return None
    return phone.strip() or None


def duplicate_user_field(exc: IntegrityError) -> Optional[str]:
    """Retorna "email"/"phone" quando o IntegrityError é de unicidade nessa coluna."""
    message = str(exc.orig).lower()
    for field, markers in _DUPLICATE_MARKERS.items():
        if any(marker in message for marker in markers):
            return field
    return None


class CRUDUser(CRUDBase[User]):
    async def get_active(self, db: AsyncSession, *, id: uuid.UUID) -> Optional[User]:
        stmt = select(User).where(User.id == id, User.is_active.is_(True))
        result = await db.execute(stmt)
        return result.scalars().first()

    async def get_active_by_identifier(self, db: AsyncSession, *, identifier: str) -> Optional[User]:
        # O identificador pode ser email ou telefone; ambos são normalizados
        stmt = (
            select(User)
            .where(
                or_(User.email == normalize_email(identifier), User.phone == normalize_phone(identifier)),
                User.is_active.is_(True),
            )
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalars().first()

    async def create(
        self,
        db: AsyncSession,
        *,
        email: Optional[str],
        phone: Optional[str],
        name: str,
        password_hash: str,
        auth_method: AuthMethod,
        now: datetime,
    ) -> User:
        """Insere o usuário. IntegrityError é propagado (após rollback) para quem chamou."""
        db_obj = User(
            email=normalize_email(email),
            phone=normalize_phone(phone),
            name=name.strip(),
            password_hash=password_hash,
            role=UserRole.USER,  # privilégios elevados são concedidos separadamente
            auth_method=auth_method,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        db.add(db_obj)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise
        await db.refresh(db_obj)
        return db_obj

    async def touch_last_login(self, db: AsyncSession, *, user_id: uuid.UUID, when: datetime) -> None:
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(last_login_at=when)
            .execution_options(synchronize_session=False)
        )
        await db.execute(stmt)
        await db.commit()

    async def update_password_hash(self, db: AsyncSession, *, user_id: uuid.UUID, password_hash: str) -> None:
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(password_hash=password_hash)
            .execution_options(synchronize_session=False)
        )
        await db.execute(stmt)
        await db.commit()

    async def set_active(self, db: AsyncSession, *, user: User, is_active: bool) -> User:
        user.is_active = is_active
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user


user = CRUDUser(User)
