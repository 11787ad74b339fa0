import datetime
import unittest
from unittest.mock import Mock

from flask_sharing.collaboration.conflict_detector import (
    ConflictDetector,
    split_activity,
)
from flask_sharing.collaboration.session_manager import PresenceEntry
from flask_sharing.permissions import PermissionLevel

from tests.base import SharingTestCase


class SplitActivityTestCase(unittest.TestCase):
    def test_split(self):
        self.assertEqual(split_activity("editing:header"), ("editing", "header"))
        self.assertEqual(split_activity(" Typing "), ("typing", None))
        self.assertEqual(split_activity("viewing:"), ("viewing", None))
        self.assertEqual(split_activity(None), (None, None))
        self.assertEqual(split_activity(""), (None, None))


class ConflictDetectorTestCase(SharingTestCase):
    def setUp(self):
        super().setUp()
        self.sessions = self.manager.sessions
        self.conflicts = self.manager.conflicts

    def beat(self, user, activity, token=None):
        self.sessions.heartbeat(
            self.project.id, user.id, token or f"tab-{user.id}", activity_label=activity
        )

    def test_two_editors_conflict(self):
        self.beat(self.admin, "editing")
        self.beat(self.editor, "editing")
        self.clock.advance(seconds=10)
        report = self.conflicts.detect(self.project.id, self.editor.id)
        self.assertTrue(report.has_conflicts)
        self.assertEqual([u.user_id for u in report.conflicting_users], [self.admin.id])
        self.assertEqual(report.conflicting_users[0].permission_level, "admin")
        self.assertTrue(
            any("coordinating" in suggestion for suggestion in report.suggestions)
        )

    def test_requesting_user_is_excluded(self):
        self.beat(self.editor, "editing", token="laptop")
        self.beat(self.editor, "editing", token="phone")
        report = self.conflicts.detect(self.project.id, self.editor.id)
        self.assertFalse(report.has_conflicts)
        self.assertEqual(report.suggestions, [])

    def test_viewing_is_not_a_conflict(self):
        self.beat(self.admin, "viewing")
        self.beat(self.viewer, "commenting")
        self.beat(self.owner, None)
        report = self.conflicts.detect(self.project.id, self.editor.id)
        self.assertFalse(report.has_conflicts)

    def test_editing_states(self):
        self.beat(self.admin, "Typing:intro")
        self.beat(self.owner, "modifying")
        report = self.conflicts.detect(self.project.id, self.viewer.id)
        self.assertCountEqual(
            [u.user_id for u in report.conflicting_users], [self.admin.id, self.owner.id]
        )
        levels = {u.user_id: u.permission_level for u in report.conflicting_users}
        self.assertEqual(levels[self.owner.id], "owner")
        self.assertTrue(report.suggestions[0].startswith("2 other collaborators are"))

    def test_offline_editor_is_not_a_conflict(self):
        self.beat(self.admin, "editing")
        self.clock.advance(minutes=5, seconds=1)
        self.beat(self.editor, "editing")
        report = self.conflicts.detect(self.project.id, self.editor.id)
        self.assertFalse(report.has_conflicts)

    def test_same_section_suggestion(self):
        self.beat(self.admin, "editing:pricing")
        self.beat(self.owner, "editing:footer")
        self.beat(self.editor, "editing:pricing")
        report = self.conflicts.detect(self.project.id, self.editor.id)
        self.assertEqual(len(report.suggestions), 3)
        self.assertIn("1 collaborator is editing 'pricing'", report.suggestions[1])
        self.assertEqual(report.suggestions[-1], "Changes are not locked; the last save wins.")

    def test_any_editing_device_conflicts(self):
        self.beat(self.admin, "editing:header", token="laptop")
        self.clock.advance(seconds=5)
        self.beat(self.admin, "viewing", token="phone")
        self.clock.advance(seconds=5)
        report = self.conflicts.detect(self.project.id, self.editor.id)
        self.assertTrue(report.has_conflicts)
        self.assertEqual([u.user_id for u in report.conflicting_users], [self.admin.id])
        self.assertEqual(report.conflicting_users[0].activity, "editing:header")
        self.assertEqual(report.conflicting_users[0].section, "header")

    def test_offline_editing_device_is_ignored(self):
        self.beat(self.admin, "editing", token="laptop")
        self.clock.advance(minutes=5, seconds=1)
        self.beat(self.admin, "viewing", token="phone")
        report = self.conflicts.detect(self.project.id, self.editor.id)
        self.assertFalse(report.has_conflicts)

    def test_own_section_from_any_device(self):
        self.beat(self.admin, "editing:pricing")
        self.beat(self.editor, "editing:pricing", token="laptop")
        self.clock.advance(seconds=5)
        self.beat(self.editor, "viewing", token="phone")
        report = self.conflicts.detect(self.project.id, self.editor.id)
        self.assertIn("1 collaborator is editing 'pricing'", report.suggestions[1])

    def test_revoked_editor_is_not_reported(self):
        self.beat(self.admin, "editing")
        self.manager.invitations.revoke(self.project.id, self.owner.id, self.admin.id)
        self.clock.advance(seconds=10)
        report = self.conflicts.detect(self.project.id, self.editor.id)
        self.assertFalse(report.has_conflicts)
        self.assertEqual(report.conflicting_users, [])

    def test_report_dict(self):
        self.beat(self.admin, "editing:header")
        data = self.conflicts.detect(self.project.id, self.viewer.id).to_dict()
        self.assertTrue(data["has_conflicts"])
        self.assertEqual(
            data["conflicting_users"],
            [
                {
                    "user_id": self.admin.id,
                    "permission_level": "admin",
                    "activity": "editing:header",
                    "section": "header",
                    "last_activity": self.clock().isoformat(),
                }
            ],
        )

    def test_detection_never_writes(self):
        self.beat(self.admin, "editing")
        events_before = len(self.events())
        self.conflicts.detect(self.project.id, self.editor.id)
        self.assertEqual(len(self.events()), events_before)


class CustomEditingActivitiesTestCase(unittest.TestCase):
    def test_configured_states(self):
        now = datetime.datetime(2026, 3, 1, 12, 0, 0)
        session_manager = Mock()
        session_manager.list_active.return_value = [
            PresenceEntry(1, True, now, "drawing:canvas", online_activities=["drawing:canvas"]),
            PresenceEntry(2, True, now, "editing", online_activities=["editing"]),
        ]
        session_manager.get_permission_level.return_value = PermissionLevel.EDITOR
        detector = ConflictDetector(session_manager, editing_activities=["Drawing"])
        report = detector.detect(10, 3)
        self.assertEqual([u.user_id for u in report.conflicting_users], [1])
        self.assertEqual(report.conflicting_users[0].permission_level, "editor")
        session_manager.list_active.assert_called_once_with(10)
