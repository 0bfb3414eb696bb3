from fastapi import Header

from fishstore.accounts import AccountService
from fishstore.types import UserOut


def bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class Authenticator:
    """FastAPI dependencies resolving the `Authorization: Bearer` header to a user."""

    def __init__(self, accounts: AccountService) -> None:
        self._accounts = accounts

    def user(self, authorization: str | None = Header(default=None)) -> UserOut:
        return self._accounts.resolve(bearer_token(authorization))

    def admin(self, authorization: str | None = Header(default=None)) -> UserOut:
        return self._accounts.require_admin(self.user(authorization))
