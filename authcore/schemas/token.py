# authcore/schemas/token.py
from pydantic import BaseModel, ConfigDict, Field


class AccessTokenClaims(BaseModel):
    """Claims de um access token já verificado."""
    sub: str
    role: str
    email: str | None = None
    token_type: str
    iss: str
    aud: str
    iat: int
    exp: int


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    expires_in: int  # segundos de vida do access token


class RefreshTokenRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    refresh_token: str = Field(..., alias="refreshToken", min_length=32, max_length=500)


class LogoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Opcional aqui para devolver INVALID_REQUEST (400) em vez de 422 quando ausente
    refresh_token: str | None = Field(None, alias="refreshToken", max_length=500)
