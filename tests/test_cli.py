import csv
import io
import os
import shutil
import tempfile

from tests.base import SharingTestCase


class SharingCliTestCase(SharingTestCase):
    def setUp(self):
        super().setUp()
        self.runner = self.app.test_cli_runner()

    def test_create_tables(self):
        result = self.runner.invoke(args=["sharing", "create-tables"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Sharing tables created", result.output)

    def test_reap_sessions(self):
        sessions = self.manager.sessions
        sessions.heartbeat(self.project.id, self.viewer.id, "old")
        self.clock.advance(hours=3)
        sessions.heartbeat(self.project.id, self.editor.id, "new")

        result = self.runner.invoke(args=["sharing", "reap-sessions"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Removed 0 collaboration sessions", result.output)

        result = self.runner.invoke(
            args=["sharing", "reap-sessions", "--retention-hours", "2"]
        )
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Removed 1 collaboration sessions", result.output)
        self.assertIsNone(self.repository.get_session_by_token("old"))

    def test_reap_sessions_rejects_non_positive_retention(self):
        result = self.runner.invoke(
            args=["sharing", "reap-sessions", "--retention-hours", "0"]
        )
        self.assertEqual(result.exit_code, 2)

    def test_export_access_log(self):
        self.manager.links.create_link(self.project.id, self.admin.id)
        self.clock.advance(minutes=1)
        self.manager.invitations.update_permission(
            self.project.id, self.owner.id, self.viewer.id, "editor"
        )
        result = self.runner.invoke(
            args=["sharing", "export-access-log", str(self.project.id)]
        )
        self.assertEqual(result.exit_code, 0, result.output)
        rows = list(csv.DictReader(io.StringIO(result.output)))
        self.assertEqual(
            [row["event_type"] for row in rows],
            ["permission_updated", "share_link_created"],
        )

        result = self.runner.invoke(
            args=[
                "sharing",
                "export-access-log",
                str(self.project.id),
                "--event-type",
                "share_link_created",
            ]
        )
        rows = list(csv.DictReader(io.StringIO(result.output)))
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["actor_id"], str(self.admin.id))

    def test_export_access_log_to_file(self):
        self.manager.links.create_link(self.project.id, self.admin.id)
        tmpdir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, tmpdir, True)
        path = os.path.join(tmpdir, "log.csv")
        result = self.runner.invoke(
            args=["sharing", "export-access-log", str(self.project.id), "--output", path]
        )
        self.assertEqual(result.exit_code, 0, result.output)
        with open(path) as f:
            self.assertIn("share_link_created", f.read())

    def test_export_unknown_project(self):
        result = self.runner.invoke(args=["sharing", "export-access-log", "4242"])
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Project not found", result.output)
