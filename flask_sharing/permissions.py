"""
Permission model for shared projects.

Levels are totally ordered: ``viewer < editor < admin < owner``. ``owner`` is
held only by the project owner and can never be assigned to a collaborator.
"""

import enum
import functools
from typing import Iterable, Optional, Union

from .exceptions import InvalidPermissionLevel


@functools.total_ordering
class PermissionLevel(enum.Enum):
    """Permission levels"""

    VIEWER = "viewer"
    EDITOR = "editor"
    ADMIN = "admin"
    OWNER = "owner"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    def __lt__(self, other):
        if not isinstance(other, PermissionLevel):
            return NotImplemented
        return self.rank < other.rank

    def __str__(self):
        return self.value

    @classmethod
    def parse(cls, value: Union[str, "PermissionLevel"]) -> "PermissionLevel":
        """
        Coerce a level name into a ``PermissionLevel``.

        :raises InvalidPermissionLevel: for unknown names
        """
        if isinstance(value, PermissionLevel):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidPermissionLevel(
                f"Unknown permission level: {value!r}", field_name="permission_level"
            )


_RANKS = {
    PermissionLevel.VIEWER: 1,
    PermissionLevel.EDITOR: 2,
    PermissionLevel.ADMIN: 3,
    PermissionLevel.OWNER: 4,
}

# Levels a collaborator row may hold
ASSIGNABLE_LEVELS = (
    PermissionLevel.VIEWER,
    PermissionLevel.EDITOR,
    PermissionLevel.ADMIN,
)

# Levels a share link may grant
LINK_LEVELS = (PermissionLevel.VIEWER, PermissionLevel.EDITOR)

MANAGER_LEVELS = (PermissionLevel.ADMIN, PermissionLevel.OWNER)

# Named capabilities, keyed the way the REST layer asks for them
CAPABILITIES = {
    "project_view": PermissionLevel.VIEWER,
    "project_edit": PermissionLevel.EDITOR,
    "project_share": PermissionLevel.ADMIN,
    "collaborator_invite": PermissionLevel.ADMIN,
    "collaborator_remove": PermissionLevel.ADMIN,
    "access_log_view": PermissionLevel.ADMIN,
}


def authorize(
    actor_level: Optional[PermissionLevel], required_level: PermissionLevel
) -> bool:
    """True iff the actor holds at least ``required_level``."""
    if actor_level is None:
        return False
    return PermissionLevel.parse(actor_level) >= PermissionLevel.parse(required_level)


def can_manage_collaborators(level: Optional[PermissionLevel]) -> bool:
    return level is not None and PermissionLevel.parse(level) in MANAGER_LEVELS


def has_capability(level: Optional[PermissionLevel], capability: str) -> bool:
    try:
        required = CAPABILITIES[capability]
    except KeyError:
        raise ValueError(f"Unknown capability: {capability}")
    return authorize(level, required)


def ensure_assignable(
    value: Union[str, PermissionLevel],
    allowed: Iterable[PermissionLevel] = ASSIGNABLE_LEVELS,
) -> PermissionLevel:
    """
    Parse ``value`` and check it may be stored on a row.

    :raises InvalidPermissionLevel: for ``owner``, unknown names, or levels
        outside ``allowed``
    """
    level = PermissionLevel.parse(value)
    allowed = tuple(allowed)
    if level not in allowed:
        names = ", ".join(lvl.value for lvl in allowed)
        raise InvalidPermissionLevel(
            f"Permission level {level.value} cannot be assigned, must be one of: {names}",
            field_name="permission_level",
        )
    return level
