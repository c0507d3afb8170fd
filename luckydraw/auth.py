"""Shared-secret authorisation for admin operations."""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Optional

from .errors import AuthFailure


@dataclass(frozen=True)
class AuthContext:
    """Outcome of checking a caller-supplied admin secret.

    Every admin workflow receives one of these and calls
    :meth:`require_admin` before touching the store.
    """

    is_admin: bool

    def require_admin(self) -> None:
        if not self.is_admin:
            raise AuthFailure()


def secrets_match(supplied: Optional[str], expected: Optional[str]) -> bool:
    """Compare two secrets in constant time.

    An empty or missing value on either side never matches, so a server
    without a configured ``ADMIN_SECRET`` rejects every admin request.
    """
    if not supplied or not expected:
        return False
    return hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


def authenticate(supplied: Optional[str], expected: Optional[str]) -> AuthContext:
    """Build the :class:`AuthContext` for a request carrying ``supplied``."""
    return AuthContext(is_admin=secrets_match(supplied, expected))


ADMIN = AuthContext(is_admin=True)
"""Pre-authorised context for trusted in-process callers such as scripts."""


__all__ = ["ADMIN", "AuthContext", "authenticate", "secrets_match"]
