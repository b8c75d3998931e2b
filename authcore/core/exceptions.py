# authcore/core/exceptions.py
from typing import TYPE_CHECKING, Any
from uuid import UUID

if TYPE_CHECKING:
    from authcore.services.rate_limiter import RateLimitResult


class AuthCoreError(Exception):
    """
    Base de todas as falhas tipadas do núcleo de autenticação.

    `code` é o código interno (logs), `public_code` o que vai para o cliente.
    """
    code = "AUTH_ERROR"
    public_code: str | None = None
    status_code = 400
    message = "Authentication error"

    def __init__(self, message: str | None = None):
        self.message = message or self.message
        super().__init__(self.message)

    @property
    def wire_code(self) -> str:
        return self.public_code or self.code

    def details(self) -> dict[str, Any] | None:
        return None


# --- Registro ---
class EmailAlreadyExistsError(AuthCoreError):
    code = "EMAIL_ALREADY_EXISTS"
    status_code = 409
    message = "An account with this email already exists"


class PhoneAlreadyExistsError(AuthCoreError):
    code = "PHONE_ALREADY_EXISTS"
    status_code = 409
    message = "An account with this phone number already exists"


# --- Credenciais ---
class InvalidCredentialsError(AuthCoreError):
    # Mesma mensagem para usuário inexistente e senha errada (evita enumeração)
    code = "INVALID_CREDENTIALS"
    status_code = 401
    message = "Invalid email/phone or password"


# --- Requisição ---
class InvalidRequestError(AuthCoreError):
    code = "INVALID_REQUEST"
    status_code = 400
    message = "Refresh token is required"


# --- Ciclo de vida do refresh token ---
class InvalidRefreshTokenError(AuthCoreError):
    code = "INVALID_REFRESH_TOKEN"
    status_code = 401
    message = "Invalid refresh token"


class RefreshTokenExpiredError(AuthCoreError):
    code = "REFRESH_TOKEN_EXPIRED"
    public_code = "TOKEN_EXPIRED"
    status_code = 401
    message = "Refresh token has expired. Please log in again."


class RefreshTokenReuseError(AuthCoreError):
    """Token já utilizado foi apresentado de novo: todas as sessões do usuário caem."""
    code = "REFRESH_TOKEN_REUSE_DETECTED"
    public_code = "TOKEN_REUSE_DETECTED"
    status_code = 403
    message = "Security alert: Token reuse detected. All sessions have been invalidated. Please log in again."

    def __init__(self, user_id: UUID, message: str | None = None):
        self.user_id = user_id
        super().__init__(message)


class UserAccountInactiveError(AuthCoreError):
    code = "USER_ACCOUNT_INACTIVE"
    public_code = "ACCOUNT_INACTIVE"
    status_code = 401
    message = "User account is inactive"


# --- Access token / Bearer ---
class MissingTokenError(AuthCoreError):
    code = "MISSING_TOKEN"
    status_code = 401
    message = "No authorization token provided"


class InvalidTokenFormatError(AuthCoreError):
    code = "INVALID_TOKEN_FORMAT"
    status_code = 401
    message = "Invalid authorization header format. Expected: Bearer <token>"


class AccessTokenExpiredError(AuthCoreError):
    code = "TOKEN_EXPIRED"
    status_code = 401
    message = "Access token has expired. Please refresh your token."


class InvalidAccessTokenError(AuthCoreError):
    code = "INVALID_TOKEN"
    status_code = 401
    message = "Invalid access token"


class ForbiddenError(AuthCoreError):
    code = "FORBIDDEN"
    status_code = 403
    message = "Insufficient permissions to access this resource"

    def __init__(self, required_roles: list[str], role: str, message: str | None = None):
        self.required_roles = required_roles
        self.role = role
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        return {"required_roles": self.required_roles, "your_role": self.role}


class UserNotFoundError(AuthCoreError):
    code = "USER_NOT_FOUND"
    status_code = 404
    message = "User not found"


# --- Rate limiting ---
class RateLimitExceededError(AuthCoreError):
    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429
    message = "Rate limit exceeded. Please try again later."

    def __init__(self, result: "RateLimitResult", message: str | None = None):
        self.result = result
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        return {
            "limit": self.result.limit,
            "retry_after": self.result.retry_after,
            "reset_at": self.result.reset_at.isoformat(),
        }


class CounterStoreUnavailableError(AuthCoreError):
    code = "COUNTER_STORE_UNAVAILABLE"
    public_code = "SERVICE_UNAVAILABLE"
    status_code = 503
    message = "Rate limiting is temporarily unavailable. Please try again later."
