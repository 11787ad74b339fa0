import datetime

import click
from flask import current_app
from flask.cli import AppGroup, with_appcontext

from .exceptions import SharingError

sharing = AppGroup("sharing", help="Project sharing maintenance commands.")


def echo_header(title):
    click.echo(click.style(title, fg="green"))
    click.echo(click.style("-" * len(title), fg="green"))


def _sharing():
    return current_app.extensions["sharing"]


@sharing.command("create-tables")
@with_appcontext
def create_tables():
    """Create the sharing tables that do not exist yet."""
    echo_header("Creating sharing tables")
    _sharing().db.create_all()
    click.echo(click.style("Sharing tables created", fg="green"))


@sharing.command("reap-sessions")
@click.option(
    "--retention-hours",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Delete sessions idle for longer than this. "
    "Defaults to SHARING_SESSION_RETENTION_HOURS.",
)
@with_appcontext
def reap_sessions(retention_hours):
    """Delete collaboration sessions idle past the retention window."""
    retention = (
        datetime.timedelta(hours=retention_hours) if retention_hours is not None else None
    )
    removed = _sharing().manager.sessions.reap_sessions(retention)
    click.echo(f"Removed {removed} collaboration sessions")


@sharing.command("export-access-log")
@click.argument("project_id", type=int)
@click.option("--event-type", default=None, help="Only export this event type.")
@click.option("--limit", type=click.IntRange(min=1), default=None)
@click.option(
    "--output",
    type=click.File("w"),
    default="-",
    help="Write CSV to this file instead of stdout.",
)
@with_appcontext
def export_access_log(project_id, event_type, limit, output):
    """Export the access log of PROJECT_ID as CSV."""
    access_log = _sharing().manager.access_log
    try:
        access_log.get_project(project_id)
        events = access_log.repository.list_events(
            project_id, event_type=event_type, limit=limit
        )
    except SharingError as e:
        raise click.ClickException(e.message)
    output.write(access_log.to_csv(events))
