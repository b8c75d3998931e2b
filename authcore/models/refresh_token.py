# authcore/models/refresh_token.py
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from authcore.db.base import Base
from .user import User


class RefreshToken(Base):
    """
    Uma linha por refresh token emitido.

    Viva = used_at NULL e expires_at no futuro. Linhas nunca são apagadas
    por este serviço (auditoria); a limpeza por expiração é externa.
    """
    __tablename__ = "refresh_tokens"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    # Armazena um HASH (sha256) do token, não o token em si, por segurança
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    user: Mapped["User"] = relationship()

    __table_args__ = (Index("ix_refresh_tokens_user_id_used_at", "user_id", "used_at"),)
