"""
Conflict Detector

Derives advisory concurrent-edit warnings from presence. Nothing here
blocks a write, there is no locking or merge layer behind it.

Activity labels are free text of the form ``state`` or ``state:section``
(``editing:header``). Only the state part decides whether a session is
editing, the section refines the suggestions.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..const import DEFAULT_EDITING_ACTIVITIES
from .session_manager import CollaborationSessionManager

log = logging.getLogger(__name__)


def split_activity(label: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """``"editing:header"`` -> ``("editing", "header")``"""
    if not label:
        return None, None
    state, _, section = label.partition(":")
    return state.strip().lower() or None, section.strip() or None


@dataclass
class ConflictingUser:
    user_id: int
    permission_level: Optional[str]
    activity: str
    section: Optional[str]
    last_activity: Any

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "permission_level": self.permission_level,
            "activity": self.activity,
            "section": self.section,
            "last_activity": self.last_activity.isoformat(),
        }


@dataclass
class ConcurrentAccessReport:
    has_conflicts: bool = False
    conflicting_users: List[ConflictingUser] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "has_conflicts": self.has_conflicts,
            "conflicting_users": [user.to_dict() for user in self.conflicting_users],
            "suggestions": list(self.suggestions),
        }


class ConflictDetector(object):
    """
    :param session_manager: source of per user presence
    :param editing_activities: activity states counted as editing
    """

    def __init__(
        self,
        session_manager: CollaborationSessionManager,
        editing_activities: Iterable[str] = DEFAULT_EDITING_ACTIVITIES,
    ):
        self.session_manager = session_manager
        self.editing_activities = frozenset(a.lower() for a in editing_activities)

    def is_editing(self, label: Optional[str]) -> bool:
        state, _ = split_activity(label)
        return state in self.editing_activities

    def detect(self, project_id: int, requesting_user_id: int) -> ConcurrentAccessReport:
        presence = self.session_manager.list_active(project_id)
        report = ConcurrentAccessReport()
        own_section = None
        for entry in presence:
            # a user is editing if any of their online sessions is
            editing = [a for a in entry.online_activities if self.is_editing(a)]
            if entry.user_id == requesting_user_id:
                if editing:
                    _, own_section = split_activity(editing[0])
                continue
            if not editing:
                continue
            level = self.session_manager.get_permission_level(project_id, entry.user_id)
            if level is None:
                # access removed since the last heartbeat
                continue
            _, section = split_activity(editing[0])
            report.conflicting_users.append(
                ConflictingUser(
                    user_id=entry.user_id,
                    permission_level=level.value,
                    activity=editing[0],
                    section=section,
                    last_activity=entry.last_activity,
                )
            )
        report.has_conflicts = bool(report.conflicting_users)
        if report.has_conflicts:
            report.suggestions = self._suggestions(report.conflicting_users, own_section)
            log.debug(
                "Project %s: %d concurrent editors besides user %s",
                project_id,
                len(report.conflicting_users),
                requesting_user_id,
            )
        return report

    @staticmethod
    def _suggestions(users: List[ConflictingUser], own_section: Optional[str]) -> List[str]:
        count = len(users)
        suggestions = [
            f"{count} other collaborator{'s are' if count > 1 else ' is'} editing this project"
            " right now. Consider coordinating before editing the same section."
        ]
        if own_section:
            same = [u for u in users if u.section == own_section]
            if same:
                suggestions.append(
                    f"{len(same)} collaborator{'s are' if len(same) > 1 else ' is'}"
                    f" editing '{own_section}' as well. Save often and communicate"
                    " your changes."
                )
        suggestions.append("Changes are not locked; the last save wins.")
        return suggestions
