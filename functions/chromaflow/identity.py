"""
Identity collaborator: who is acting, and whether they may import and save.
"""

from typing import Optional, Protocol


class IdentityProvider(Protocol):
    """Anything that can name the current user."""

    def current_user_id(self) -> Optional[str]:
        """Opaque user id, or None when signed out."""


class StaticIdentity:
    """Fixed identity, e.g. taken from a request header."""

    def __init__(self, user_id: Optional[str] = None):
        self.user_id = user_id or None

    def current_user_id(self) -> Optional[str]:
        return self.user_id


def is_admin(identity: Optional[IdentityProvider], admin_id: Optional[str]) -> bool:
    """True only when both ids are present and equal."""
    if identity is None or not admin_id:
        return False
    user_id = identity.current_user_id()
    return bool(user_id) and user_id == admin_id
