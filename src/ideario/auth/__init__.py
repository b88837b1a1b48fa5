"""Ideario authentication and authorization."""

from ideario.auth.provider import AuthProvider, LocalAuthProvider

__all__ = ["AuthProvider", "LocalAuthProvider"]
