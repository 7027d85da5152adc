"""Bearer token verification against the Auth Service."""

from .client import AuthClient

__all__ = ["AuthClient"]
