from .errors import AuthorityError
from .logging import configure_logging, logger
from .rbac import Role
from .security import create_access_token, decode_token
from .settings import settings

__all__ = [
    "AuthorityError",
    "configure_logging",
    "logger",
    "Role",
    "create_access_token",
    "decode_token",
    "settings",
]
