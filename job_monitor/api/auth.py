"""Authorization collaborator for the HTTP API.

Authentication itself happens elsewhere; this module only maps a request to a
User (or to nobody, when authentication is disabled).  The REST routes then
require the ``api`` role.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from fastapi import Request

from ..errors import AuthenticationError

logger = logging.getLogger(__name__)

ROLE_API = "api"


@dataclass(frozen=True)
class User:
    username: str
    roles: frozenset[str] = field(default_factory=frozenset)

    def has_role(self, role: str) -> bool:
        return role in self.roles


class Authentication(ABC):
    @abstractmethod
    def authenticate(self, request: Request) -> User | None:
        """Return the requesting user, or None when nobody needs to be identified.

        Raises:
            AuthenticationError: Credentials missing or not recognised
        """


class NoAuthentication(Authentication):
    """Every request is let through without a user."""

    def authenticate(self, request: Request) -> User | None:
        return None


class TokenAuthentication(Authentication):
    """Static API tokens, sent as ``X-Auth-Token`` or ``Authorization: Bearer``.

    Args:
        tokens: Mapping of token -> User
    """

    def __init__(self, tokens: dict[str, User]):
        self.tokens = dict(tokens)

    @classmethod
    def from_dict(cls, data: dict[str, dict]) -> "TokenAuthentication":
        """Build from ``{token: {"username": ..., "roles": [...]}}``."""
        return cls({
            token: User(username=entry["username"], roles=frozenset(entry.get("roles", [])))
            for token, entry in data.items()
        })

    @staticmethod
    def _token(request: Request) -> str | None:
        token = request.headers.get("X-Auth-Token")
        if token:
            return token
        scheme, _, value = request.headers.get("Authorization", "").partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            return value.strip()
        return None

    def authenticate(self, request: Request) -> User:
        token = self._token(request)
        if token is None:
            raise AuthenticationError("missing API token")
        user = self.tokens.get(token)
        if user is None:
            logger.debug(f"rejected unknown API token from {request.client.host if request.client else '?'}")
            raise AuthenticationError("invalid API token")
        return user
