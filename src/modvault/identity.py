from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Protocol

from werkzeug.security import check_password_hash, generate_password_hash

from modvault.config import UserConfig
from modvault.schemas import Principal, Role

logger = logging.getLogger(__name__)

# Compared against when the username is unknown so both paths hash once.
_DUMMY_HASH = generate_password_hash("modvault-unknown-user")


class IdentityProvider(Protocol):
    def authenticate(self, username: str, password: str) -> Principal | None: ...


class ConfiguredIdentityProvider:
    """Identity provider backed by the ``users`` list from configuration."""

    def __init__(self, users: Iterable[UserConfig]) -> None:
        self._users = {user.username: user for user in users}

    def authenticate(self, username: str, password: str) -> Principal | None:
        candidate = self._users.get(username)
        password_hash = candidate.password_hash if candidate is not None else _DUMMY_HASH
        if not check_password_hash(password_hash, password) or candidate is None:
            logger.info("authentication failed username=%s", username)
            return None

        return Principal(username=candidate.username, role=candidate.role)

    def usernames(self) -> list[str]:
        return sorted(self._users)


def hash_password(password: str) -> str:
    if not password:
        raise ValueError("password must not be empty")
    return generate_password_hash(password)


def make_user(username: str, password: str, role: Role | str) -> UserConfig:
    return UserConfig(username=username, password_hash=hash_password(password), role=role)
