"""Request-scoped identity of the authenticated caller.

The HTTP layer resolves a ``UserContext`` once per request and hands it to
the workflow engine explicitly; nothing here is stored in globals.
"""

from .models.envelope import CamelModel

ROLE_ADMIN = "ADMIN"
ROLE_USER = "USER"


class UserContext(CamelModel):
    """Identity as returned by the identity verifier."""

    user_id: int
    username: str
    role: str = ROLE_USER

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def can_access(self, owner_id: int) -> bool:
        """True when the caller owns the resource or is an admin."""
        return self.is_admin or self.user_id == owner_id
