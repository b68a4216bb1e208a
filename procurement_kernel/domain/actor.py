"""
Actor -- the authenticated caller of every lifecycle operation.

The identity collaborator authenticates the caller and hands the kernel an
``Actor``.  It is passed explicitly to each operation; nothing in the kernel
reads it from ambient request state.
"""

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Closed set of roles known to the procurement lifecycle."""

    REQUESTER = "requester"
    FINANCE = "finance"
    ADMIN = "admin"


# Roles allowed to approve, reject, convert and manage master data.
APPROVER_ROLES: frozenset[Role] = frozenset({Role.FINANCE, Role.ADMIN})


@dataclass(frozen=True)
class Actor:
    """Caller identity: an opaque user id and a role."""

    id: str
    role: Role

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Actor id must be non-empty")
        if not isinstance(self.role, Role):
            object.__setattr__(self, "role", Role(self.role))

    @property
    def is_approver(self) -> bool:
        return self.role in APPROVER_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN
