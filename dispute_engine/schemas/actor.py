"""
Actor Schema

Who is acting. Identity is asserted by the upstream gateway; the engine
only checks that the role and ownership fit the action.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ActorRole(str, Enum):
    """Roles that can act on claims and compliances."""
    CLIENT = "client"           # Hired the service
    PROVIDER = "provider"       # Delivers the service
    MODERATOR = "moderator"     # Staff: reviews claims and compliances
    ADMIN = "admin"             # Staff: may act on any claim


STAFF_ROLES = frozenset({ActorRole.MODERATOR, ActorRole.ADMIN})
PARTY_ROLES = frozenset({ActorRole.CLIENT, ActorRole.PROVIDER})


class Actor(BaseModel):
    """The identity attached to every action request."""
    user_id: str = Field(..., min_length=1)
    role: ActorRole
    email: Optional[str] = None

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN

    @property
    def is_party(self) -> bool:
        return self.role in PARTY_ROLES
