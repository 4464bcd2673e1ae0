"""Auth/session provider contract.

Session issuance lives outside PromptForge. The pipeline only asks who the
current user is and fails with ``Unauthenticated`` when nobody is signed in.
"""

from typing import Protocol

from pydantic import BaseModel

from .errors import Unauthenticated
from .logging_config import get_logger

logger = get_logger(__name__)


class User(BaseModel):
    id: str
    email: str | None = None


class AuthProvider(Protocol):
    def get_current_user(self) -> User | None: ...

    def require_authenticated_user(self) -> User: ...


class StaticAuthProvider:
    """In-process provider holding at most one signed-in user.

    The terminal front end signs a user in from ``--user`` or the
    ``PROMPTFORGE_USER`` variable; tests sign in and out directly.
    """

    def __init__(self, user: User | None = None):
        self._user = user

    def get_current_user(self) -> User | None:
        return self._user

    def require_authenticated_user(self) -> User:
        if self._user is None:
            raise Unauthenticated("no signed-in user")
        return self._user

    def sign_in(self, user_id: str, email: str | None = None) -> User:
        self._user = User(id=user_id, email=email)
        logger.info("Signed in user %s", user_id)
        return self._user

    def sign_out(self) -> None:
        if self._user is not None:
            logger.info("Signed out user %s", self._user.id)
        self._user = None
