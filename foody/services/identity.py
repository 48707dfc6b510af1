"""
Identity Collaborator

The session/identity provider lives outside this service. What reaches
the core is the authenticated user id and role, nothing more.
"""

import enum
from dataclasses import dataclass


class Role(str, enum.Enum):
    """Roles issued by the identity provider."""
    CUSTOMER = "customer"
    STAFF = "staff"
    ADMIN = "admin"


@dataclass(frozen=True)
class Identity:
    """Authenticated caller."""
    user_id: int
    role: Role = Role.CUSTOMER

    @property
    def is_staff(self) -> bool:
        """Staff and admins run the floor: transitions, bills, payments."""
        return self.role in (Role.STAFF, Role.ADMIN)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def owns(self, user_id: int) -> bool:
        return self.user_id == user_id
