"""Authentication services package."""

from src.services.auth.provider import (
    AuthError,
    AuthProviderInterface,
    LocalAuthProvider,
)

__all__ = [
    "AuthError",
    "AuthProviderInterface",
    "LocalAuthProvider",
]
