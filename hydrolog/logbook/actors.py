"""Operators and the roles that gate what they may change."""

from dataclasses import dataclass
from enum import Enum

from hydrolog.logbook.errors import PermissionDenied


class Role(str, Enum):
    OPERATOR = "operator"
    ADMIN = "admin"
    VIEWER = "viewer"


@dataclass(frozen=True)
class Actor:
    """The person (or agent) acting on the logbook.

    Attributes:
        id: Stable identifier supplied by the authentication layer.
        role: What the actor may do. Operators and admins write logs and
            checklists; only admins finalize days and move issue status.
    """
    id: str
    role: Role = Role.OPERATOR

    @property
    def can_write(self) -> bool:
        return self.role in (Role.OPERATOR, Role.ADMIN)

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


def require_writer(actor: Actor, action: str) -> None:
    if not actor.can_write:
        raise PermissionDenied(f"Role '{actor.role.value}' may not {action}")


def require_admin(actor: Actor, action: str) -> None:
    if not actor.is_admin:
        raise PermissionDenied(f"Only administrators may {action}")
