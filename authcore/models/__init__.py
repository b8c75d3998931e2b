from .user import AuthMethod, User, UserRole  # noqa: F401
from .refresh_token import RefreshToken  # noqa: F401
