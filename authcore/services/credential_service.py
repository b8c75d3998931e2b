# authcore/services/credential_service.py
"""
Orquestração do ciclo de vida de credenciais.

Compõe o hasher Argon2id, o TokenCodec e a camada de acesso ao banco para
registro, login, refresh com rotação estrita, logout e revogação global.

Garantias de segurança mantidas aqui:
- login com usuário inexistente executa a mesma verificação de hash (dummy digest),
  então a latência não revela se a conta existe;
- refresh tokens são de uso único: o resgate é um UPDATE condicional, nunca
  ler-e-depois-escrever;
- reapresentar um token já usado invalida TODOS os tokens do usuário.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from argon2.exceptions import HashingError
from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from authcore.core.config import Settings
from authcore.core.exceptions import (
    EmailAlreadyExistsError,
    InvalidRefreshTokenError,
    PhoneAlreadyExistsError,
    RefreshTokenExpiredError,
    RefreshTokenReuseError,
    UserAccountInactiveError,
)
from authcore.core.logging import mask_token
from authcore.core.security import Argon2PasswordHasher, TokenCodec
from authcore.crud import crud_refresh_token
from authcore.crud.crud_user import duplicate_user_field, user as crud_user
from authcore.schemas.token import TokenPair
from authcore.schemas.user import UserCreate, UserRead


def utcnow() -> datetime:
    # O banco guarda UTC "naive"
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class RefreshResult:
    tokens: TokenPair
    user: UserRead


class CredentialService:
    def __init__(self, settings: Settings, codec: TokenCodec, hasher: Argon2PasswordHasher):
        self.settings = settings
        self.codec = codec
        self.hasher = hasher
        self.refresh_token_ttl = timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)

    # --- Registro ---
    async def create_user(self, db: AsyncSession, *, obj_in: UserCreate) -> UserRead:
        password_hash = await self.hasher.hash_async(obj_in.password)
        try:
            db_user = await crud_user.create(
                db,
                email=obj_in.email,
                phone=obj_in.phone,
                name=obj_in.name,
                password_hash=password_hash,
                auth_method=obj_in.auth_method,
                now=utcnow(),
            )
        except IntegrityError as e:
            field = duplicate_user_field(e)
            if field == "email":
                raise EmailAlreadyExistsError()
            if field == "phone":
                raise PhoneAlreadyExistsError()
            logger.error(f"Falha ao criar usuário: {e}")
            raise

        logger.info(f"Usuário criado: id={db_user.id} auth_method={db_user.auth_method.value}")
        return UserRead.model_validate(db_user)
    # --- Fim Registro ---

    # --- Login ---
    async def verify_credentials(self, db: AsyncSession, *, identifier: str, password: str) -> Optional[UserRead]:
        """
        Retorna o usuário se a senha confere, senão None.

        Exatamente UMA verificação Argon2 por chamada, exista a conta ou não.
        Não remover o ramo do dummy digest: ele fecha um canal lateral de tempo
        que permitiria enumerar contas.
        """
        db_user = await crud_user.get_active_by_identifier(db, identifier=identifier)

        if db_user is None:
            await self.hasher.verify_async(self.hasher.dummy_digest, password)
            logger.warning("Tentativa de login falhou: reason=user_not_found")
            return None

        if not await self.hasher.verify_async(db_user.password_hash, password):
            logger.warning(f"Tentativa de login falhou: reason=invalid_password user_id={db_user.id}")
            return None

        # Snapshot antes de qualquer escrita: um rollback expiraria o objeto ORM
        user = UserRead.model_validate(db_user)
        stale_digest = db_user.password_hash
        logged_in_at = await self._after_successful_login(db, user.id, stale_digest, password)
        if logged_in_at is not None:
            user = user.model_copy(update={"last_login_at": logged_in_at})
        logger.info(f"Login bem-sucedido: user_id={user.id}")
        return user

    async def _after_successful_login(
        self, db: AsyncSession, user_id: uuid.UUID, digest: str, password: str
    ) -> Optional[datetime]:
        # Best-effort: falha aqui nunca derruba o login
        await self._rehash_if_needed(db, user_id, digest, password)
        now = utcnow()
        try:
            await crud_user.touch_last_login(db, user_id=user_id, when=now)
        except SQLAlchemyError as e:
            await db.rollback()
            logger.warning(f"Não foi possível atualizar last_login_at para user_id={user_id}: {e}")
            return None
        return now

    async def _rehash_if_needed(self, db: AsyncSession, user_id: uuid.UUID, digest: str, password: str) -> None:
        if not self.hasher.needs_rehash(digest):
            return
        try:
            new_hash = await self.hasher.hash_async(password)
            await crud_user.update_password_hash(db, user_id=user_id, password_hash=new_hash)
        except (HashingError, SQLAlchemyError) as e:
            await db.rollback()
            logger.warning(f"Não foi possível atualizar o hash de senha de user_id={user_id}: {e}")
            return
        logger.info(f"Hash de senha atualizado para os parâmetros atuais: user_id={user_id}")
    # --- Fim Login ---

    # --- Tokens ---
    async def generate_token_pair(self, db: AsyncSession, *, user: UserRead) -> TokenPair:
        access_token = self.codec.generate_access_token(
            subject=str(user.id),
            role=user.role.value,
            email=user.email,
        )
        refresh_token = self.codec.generate_refresh_token()
        now = utcnow()
        try:
            db_token = await crud_refresh_token.create_refresh_token(
                db,
                user_id=user.id,
                token=refresh_token,
                created_at=now,
                expires_at=now + self.refresh_token_ttl,
            )
        except SQLAlchemyError as e:
            logger.error(f"Falha ao gerar par de tokens para user_id={user.id}: {e}")
            raise

        logger.info(f"Par de tokens gerado: user_id={user.id} token_id={db_token.id}")
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.codec.access_token_ttl_seconds,
        )

    async def refresh_access_token(self, db: AsyncSession, *, presented_token: str) -> RefreshResult:
        """
        Troca um refresh token vivo por um par novo (rotação estrita).

        Ordem das checagens: inexistente -> expirado -> já usado (reuso) ->
        conta inativa -> resgate condicional.
        """
        found = await crud_refresh_token.get_refresh_token_with_owner(db, token=presented_token)
        if found is None:
            logger.warning(f"Refresh token não encontrado: {mask_token(presented_token)}")
            raise InvalidRefreshTokenError()
        db_token, db_user = found
        now = utcnow()

        if db_token.expires_at <= now:
            logger.warning(f"Refresh token expirado usado: user_id={db_user.id} token_id={db_token.id}")
            raise RefreshTokenExpiredError()

        if db_token.used_at is not None:
            await self._handle_reuse(db, user_id=db_user.id, token_id=db_token.id, first_used_at=db_token.used_at)

        if not db_user.is_active:
            logger.warning(f"Refresh recusado para conta inativa: user_id={db_user.id}")
            raise UserAccountInactiveError()

        # Só um resgate concorrente vence; quem perde cai no caminho de reuso
        if not await crud_refresh_token.consume_refresh_token(db, token_id=db_token.id, now=now):
            await self._handle_reuse(db, user_id=db_user.id, token_id=db_token.id, first_used_at=None)

        user = UserRead.model_validate(db_user)
        tokens = await self.generate_token_pair(db, user=user)
        logger.info(f"Access token renovado: user_id={user.id} old_token_id={db_token.id}")
        return RefreshResult(tokens=tokens, user=user)

    async def _handle_reuse(
        self, db: AsyncSession, *, user_id: uuid.UUID, token_id: uuid.UUID, first_used_at: Optional[datetime]
    ) -> None:
        revoked = await self.invalidate_all_user_tokens(db, user_id=user_id)
        logger.bind(security_event="refresh_token_reuse", user_id=str(user_id)).critical(
            f"SECURITY ALERT: reuso de refresh token detectado user_id={user_id} token_id={token_id} "
            f"first_used_at={first_used_at} tokens_invalidados={revoked}"
        )
        raise RefreshTokenReuseError(user_id=user_id)

    async def invalidate_refresh_token(
        self, db: AsyncSession, *, token: str, user_id: Optional[uuid.UUID] = None
    ) -> bool:
        invalidated = await crud_refresh_token.invalidate_refresh_token(db, token=token, now=utcnow(), user_id=user_id)
        if invalidated:
            logger.info(f"Refresh token invalidado: {mask_token(token)}")
        return invalidated

    async def invalidate_all_user_tokens(self, db: AsyncSession, *, user_id: uuid.UUID) -> int:
        count = await crud_refresh_token.invalidate_all_refresh_tokens_for_user(db, user_id=user_id, now=utcnow())
        logger.warning(f"Todos os refresh tokens invalidados: user_id={user_id} quantidade={count}")
        return count
    # --- Fim Tokens ---

    async def find_user_by_id(self, db: AsyncSession, *, user_id: uuid.UUID) -> Optional[UserRead]:
        db_user = await crud_user.get_active(db, id=user_id)
        if db_user is None:
            return None
        return UserRead.model_validate(db_user)
