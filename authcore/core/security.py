# authcore/core/security.py
import asyncio
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from jose import ExpiredSignatureError, JWTError, jwt
from loguru import logger
from pydantic import ValidationError

from authcore.schemas.token import AccessTokenClaims
from .config import Settings
from .exceptions import AccessTokenExpiredError, InvalidAccessTokenError

ACCESS_TOKEN_TYPE = "access"


# --- Hash de senha (Argon2id) ---
class Argon2PasswordHasher:
    """
    Hash de senha memory-hard com parâmetros fixos para todo o processo.

    `dummy_digest` é calculado uma vez, com os mesmos custos, para que o login
    de um usuário inexistente faça exatamente a mesma verificação cara.
    """

    def __init__(self, settings: Settings):
        self._hasher = PasswordHasher(
            time_cost=settings.ARGON2_TIME_COST,
            memory_cost=settings.ARGON2_MEMORY_COST,
            parallelism=settings.ARGON2_PARALLELISM,
            type=Type.ID,
        )
        self.dummy_digest = self._hasher.hash(secrets.token_urlsafe(32))

    def hash(self, secret: str) -> str:
        return self._hasher.hash(secret)

    def verify(self, digest: str, secret: str) -> bool:
        try:
            return self._hasher.verify(digest, secret)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError) as e:
            logger.warning(f"Digest de senha inválido ou corrompido: {e}")
            return False

    def needs_rehash(self, digest: str) -> bool:
        try:
            return self._hasher.check_needs_rehash(digest)
        except InvalidHashError:
            return True

    # Argon2 é CPU-bound e lento de propósito: roda no thread pool, nunca no event loop
    async def hash_async(self, secret: str) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.hash, secret)

    async def verify_async(self, digest: str, secret: str) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.verify, digest, secret)
# --- Fim Hash de senha ---


# --- Tokens ---
class TokenCodec:
    """Assina/verifica access tokens (JWT HS256) e gera refresh tokens opacos."""

    def __init__(self, settings: Settings):
        self._secret = settings.SECRET_KEY
        self._algorithm = settings.ALGORITHM
        self._issuer = settings.JWT_ISSUER
        self._audience = settings.JWT_AUDIENCE
        self._refresh_token_bytes = settings.REFRESH_TOKEN_BYTES
        self.access_token_ttl = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    @property
    def access_token_ttl_seconds(self) -> int:
        return int(self.access_token_ttl.total_seconds())

    def generate_access_token(
        self,
        *,
        subject: str,
        role: str,
        email: Optional[str],
        issued_at: Optional[datetime] = None,
    ) -> str:
        now = issued_at or datetime.now(timezone.utc)
        to_encode: Dict[str, Any] = {
            "iss": self._issuer,
            "aud": self._audience,
            "iat": now,
            "nbf": now,
            "exp": now + self.access_token_ttl,
            "sub": subject,
            "role": role,
            "email": email,
            "token_type": ACCESS_TOKEN_TYPE,
        }
        return jwt.encode(to_encode, self._secret, algorithm=self._algorithm)

    def verify_access_token(self, token: str) -> AccessTokenClaims:
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                audience=self._audience,
                issuer=self._issuer,
                options={"verify_iss": True, "verify_aud": True, "require_exp": True, "require_iat": True},
            )
        except ExpiredSignatureError:
            raise AccessTokenExpiredError()
        except JWTError as e:
            logger.warning(f"Falha na verificação do access token: {e}")
            raise InvalidAccessTokenError()

        # Sem esta checagem um envelope assinado de outro tipo passaria como access token
        if payload.get("token_type") != ACCESS_TOKEN_TYPE:
            logger.warning(f"Token com tipo incorreto usado como access token: {payload.get('token_type')!r}")
            raise InvalidAccessTokenError()

        try:
            return AccessTokenClaims.model_validate(payload)
        except ValidationError:
            raise InvalidAccessTokenError()

    def generate_refresh_token(self) -> str:
        # secrets usa o CSPRNG do sistema operacional
        return secrets.token_hex(self._refresh_token_bytes)
# --- Fim Tokens ---


def extract_token_from_header(header_value: Optional[str], scheme: str = "Bearer") -> Optional[str]:
    """
    Extrai o token de um header "Scheme token".

    O esquema é comparado de forma exata (case-sensitive) e deve ser seguido de
    exatamente um espaço. Qualquer outro formato retorna None, nunca levanta.
    """
    if not header_value:
        return None
    prefix = f"{scheme} "
    if not header_value.startswith(prefix):
        return None
    token = header_value[len(prefix):]
    if not token or token[0].isspace():
        return None
    return token
