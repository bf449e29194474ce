"""HTTP API: FastAPI app, REST routes, wire schemas and authorization."""

from .app import build_app_from_config, create_app
from .auth import NoAuthentication, TokenAuthentication, User

__all__ = [
    "NoAuthentication",
    "TokenAuthentication",
    "User",
    "build_app_from_config",
    "create_app",
]
