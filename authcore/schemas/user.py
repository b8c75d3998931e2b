# authcore/schemas/user.py
import re
import uuid
from datetime import datetime
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from authcore.models.user import AuthMethod, UserRole

# E.164: "+" seguido de 8 a 15 dígitos
PHONE_PATTERN = r"^\+[1-9]\d{7,14}$"

T = TypeVar("T")


# Função de validação de senha
def password_strength_validator(password: str) -> str:
    if len(password) < 8:
        raise ValueError('Password must be at least 8 characters long')
    if not re.search(r"[a-z]", password):
        raise ValueError('Password must contain at least one lowercase letter')
    if not re.search(r"[A-Z]", password):
        raise ValueError('Password must contain at least one uppercase letter')
    if not re.search(r"[0-9]", password):
        raise ValueError('Password must contain at least one digit')
    return password


class CamelModel(BaseModel):
    """Campos em snake_case no Python, camelCase no JSON."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserCreate(CamelModel):
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    password: str = Field(..., min_length=8)
    name: str = Field(..., min_length=2, max_length=100)
    auth_method: Optional[AuthMethod] = None

    @field_validator('password')
    @classmethod
    def validate_password_strength(cls, v: str) -> str:
        return password_strength_validator(v)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError('Name must be between 2 and 100 characters')
        return v

    @model_validator(mode="after")
    def resolve_auth_method(self) -> "UserCreate":
        if not self.email and not self.phone:
            raise ValueError('Either email or phone must be provided')
        if self.auth_method is None:
            # Os dois informados -> email
            self.auth_method = AuthMethod.EMAIL if self.email else AuthMethod.PHONE
        if self.auth_method == AuthMethod.EMAIL and not self.email:
            raise ValueError('Email is required when authentication method is email')
        if self.auth_method == AuthMethod.PHONE and not self.phone:
            raise ValueError('Phone is required when authentication method is phone')
        return self


class LoginRequest(CamelModel):
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    password: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def require_identifier(self) -> "LoginRequest":
        if not self.email and not self.phone:
            raise ValueError('Either email or phone must be provided')
        return self

    @property
    def identifier(self) -> str:
        return self.email or self.phone  # type: ignore[return-value]


class UserRead(CamelModel):
    """Visão pública do usuário (sem o digest da senha)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: uuid.UUID
    email: Optional[str] = None
    phone: Optional[str] = None
    name: str
    role: UserRole
    auth_method: AuthMethod
    is_active: bool
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class UserStatusUpdate(CamelModel):
    is_active: bool


# --- Respostas ---
class AuthData(CamelModel):
    user: UserRead
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int


class UserData(CamelModel):
    user: UserRead


class MessageData(CamelModel):
    message: str


class RevokedSessionsData(CamelModel):
    revoked_sessions: int


class SessionData(CamelModel):
    authenticated: bool
    user_id: Optional[str] = None
    role: Optional[str] = None


class Envelope(BaseModel, Generic[T]):
    success: bool = True
    data: T
# --- Fim Respostas ---
