"""
REST endpoints for project sharing.

Collaborators, invitations, share links, collaboration sessions and the
access log of a project. Every endpoint but the public link resolution
requires a signed in caller; authorization against the project happens in
the managers.
"""

import logging

from flask import Blueprint, make_response, request
from flask_login import current_user

from ..permissions import PermissionLevel
from ..security.rate_limiting import rate_limit
from . import (
    current_user_id,
    get_manager,
    load_json,
    protect,
    response,
    safe,
    to_naive_utc,
)
from .schemas import (
    access_events_schema,
    access_log_query_schema,
    collaborator_schema,
    collaborators_schema,
    end_session_schema,
    heartbeat_schema,
    invitation_action_schema,
    invitations_schema,
    invite_schema,
    link_create_schema,
    link_target_schema,
    list_query_schema,
    presence_schema,
    session_schema,
    share_link_schema,
    target_user_schema,
    update_permission_schema,
)

log = logging.getLogger(__name__)

sharing_api = Blueprint("sharing_api", __name__)


@sharing_api.errorhandler(429)
def ratelimit_handler(e):
    return response(
        429,
        error_code="RATE_LIMIT_EXCEEDED",
        message=f"Too many requests: {e.description}",
    )


# ── Sharing summary ──────────────────────────────────────────────────────


@sharing_api.route("/projects/<int:project_id>/sharing", methods=["GET"])
@rate_limit("sharing_read")
@protect
@safe
def get_sharing(project_id: int):
    summary = get_manager().summary(project_id, current_user_id())
    if summary["collaborators"] is not None:
        summary["collaborators"] = collaborators_schema.dump(summary["collaborators"])
    summary["active_collaborators"] = presence_schema.dump(
        summary["active_collaborators"]
    )
    return response(200, **summary)


# ── Collaborators ────────────────────────────────────────────────────────


@sharing_api.route("/projects/<int:project_id>/collaborators", methods=["GET"])
@rate_limit("collaborators_read")
@protect
@safe
def list_collaborators(project_id: int):
    args = list_query_schema.load(request.args.to_dict())
    rows = get_manager().invitations.list_collaborators(
        project_id, current_user_id(), include_terminal=args["include_terminal"]
    )
    return response(200, collaborators=collaborators_schema.dump(rows), count=len(rows))


@sharing_api.route("/projects/<int:project_id>/collaborators", methods=["POST"])
@rate_limit("collaborators_write")
@protect
@safe
def invite_collaborator(project_id: int):
    item = load_json(invite_schema)
    collaborator = get_manager().invitations.invite(
        project_id,
        current_user_id(),
        item["email"],
        item["permission_level"],
        message=item.get("message"),
        expires_at=to_naive_utc(item.get("expires_at")),
    )
    return response(201, collaborator=collaborator_schema.dump(collaborator))


@sharing_api.route("/projects/<int:project_id>/collaborators", methods=["PUT"])
@rate_limit("collaborators_write")
@protect
@safe
def update_collaborator(project_id: int):
    item = load_json(update_permission_schema)
    collaborator = get_manager().invitations.update_permission(
        project_id, current_user_id(), item["user_id"], item["permission_level"]
    )
    return response(200, collaborator=collaborator_schema.dump(collaborator))


@sharing_api.route("/projects/<int:project_id>/collaborators", methods=["DELETE"])
@rate_limit("collaborators_write")
@protect
@safe
def revoke_collaborator(project_id: int):
    args = target_user_schema.load(request.args.to_dict())
    collaborator = get_manager().invitations.revoke(
        project_id, current_user_id(), args["user_id"]
    )
    return response(200, collaborator=collaborator_schema.dump(collaborator))


@sharing_api.route("/projects/<int:project_id>/collaborators/resend", methods=["POST"])
@rate_limit("collaborators_write")
@protect
@safe
def resend_invitation(project_id: int):
    item = load_json(target_user_schema)
    collaborator = get_manager().invitations.resend(
        project_id, current_user_id(), item["user_id"]
    )
    return response(200, collaborator=collaborator_schema.dump(collaborator))


# ── Invitations ──────────────────────────────────────────────────────────


@sharing_api.route("/projects/<int:project_id>/invitations", methods=["POST"])
@rate_limit("collaborators_write")
@protect
@safe
def respond_to_invitation(project_id: int):
    item = load_json(invitation_action_schema)
    invitations = get_manager().invitations
    if item["action"] == "accept":
        collaborator = invitations.accept(project_id, current_user_id())
    else:
        collaborator = invitations.decline(project_id, current_user_id())
    return response(200, collaborator=collaborator_schema.dump(collaborator))


@sharing_api.route("/invitations", methods=["GET"])
@rate_limit("collaborators_read")
@protect
@safe
def list_invitations():
    rows = get_manager().invitations.list_user_invitations(current_user_id())
    return response(200, invitations=invitations_schema.dump(rows), count=len(rows))


# ── Share links ──────────────────────────────────────────────────────────


@sharing_api.route("/projects/<int:project_id>/sharing/links", methods=["GET"])
@rate_limit("links_read")
@protect
@safe
def list_links(project_id: int):
    links = get_manager().links
    rows = links.list_links(project_id, current_user_id())
    return response(
        200,
        links=[share_link_schema.dump(links.describe(link)) for link in rows],
        count=len(rows),
    )


@sharing_api.route("/projects/<int:project_id>/sharing/links", methods=["POST"])
@rate_limit("links_write")
@protect
@safe
def create_link(project_id: int):
    item = load_json(link_create_schema)
    links = get_manager().links
    link = links.create_link(
        project_id,
        current_user_id(),
        permission_level=item["permission_level"],
        max_access_count=item.get("max_access_count"),
        expires_in_hours=item.get("expires_in_hours"),
        domain_restrictions=item["domain_restrictions"],
        requires_login=item["requires_login"],
        allow_api_access=item["allow_api_access"],
        metadata=item["metadata"],
    )
    return response(201, link=share_link_schema.dump(links.describe(link)))


@sharing_api.route("/projects/<int:project_id>/sharing/links", methods=["DELETE"])
@rate_limit("links_write")
@protect
@safe
def revoke_link(project_id: int):
    args = link_target_schema.load(request.args.to_dict())
    links = get_manager().links
    link = links.revoke(project_id, current_user_id(), args["link_id"])
    return response(200, link=share_link_schema.dump(links.describe(link)))


@sharing_api.route("/share/<token>", methods=["GET"])
@rate_limit("share_resolve")
@safe
def resolve_link(token: str):
    manager = get_manager()
    user = current_user if current_user.is_authenticated else None
    resolution = manager.links.resolve(token, user=user)
    project = manager.repository.get_project(resolution.project_id)
    return response(
        200,
        project={
            "id": project.id,
            "name": project.name,
            "description": project.description,
        },
        **resolution.to_dict(),
    )


# ── Collaboration sessions ───────────────────────────────────────────────


@sharing_api.route("/projects/<int:project_id>/sharing/sessions", methods=["GET"])
@rate_limit("sessions_read")
@protect
@safe
def list_sessions(project_id: int):
    manager = get_manager()
    user_id = current_user_id()
    manager.sessions.get_project(project_id)
    manager.sessions.require_level(
        project_id, user_id, PermissionLevel.VIEWER, "project_view"
    )
    presence = manager.sessions.list_active(project_id)
    report = manager.conflicts.detect(project_id, user_id)
    conflicting = {user.user_id for user in report.conflicting_users}
    collaborators = presence_schema.dump(presence)
    for entry in collaborators:
        entry["is_conflicting"] = entry["user_id"] in conflicting
    statistics = manager.sessions.session_statistics(project_id)
    statistics["conflicting_sessions"] = len(conflicting) if report.has_conflicts else 0
    statistics["has_concurrent_editing"] = report.has_conflicts
    return response(
        200,
        collaborators=collaborators,
        statistics=statistics,
        concurrent_access=report.to_dict(),
    )


@sharing_api.route("/projects/<int:project_id>/sharing/sessions", methods=["POST"])
@rate_limit("sessions_heartbeat")
@protect
@safe
def heartbeat(project_id: int):
    item = load_json(heartbeat_schema)
    collab_session = get_manager().sessions.heartbeat(
        project_id,
        current_user_id(),
        item["session_token"],
        item.get("activity"),
        device_info=item.get("device_info"),
        cursor_position=item.get("cursor_position"),
        selection_data=item.get("selection_data"),
    )
    return response(200, session=session_schema.dump(collab_session))


@sharing_api.route("/projects/<int:project_id>/sharing/sessions", methods=["DELETE"])
@rate_limit("sessions_write")
@protect
@safe
def end_session(project_id: int):
    args = end_session_schema.load(request.args.to_dict())
    manager = get_manager()
    user_id = current_user_id()
    if "session_id" in args:
        manager.sessions.end_session_by_id(project_id, user_id, args["session_id"])
        return response(200, ended=1)
    if "session_token" in args:
        collab_session = manager.repository.get_session_by_token(args["session_token"])
        if collab_session is None or collab_session.project_id != project_id:
            return response(200, ended=0)
        if collab_session.user_id != user_id:
            manager.sessions.end_session_by_id(project_id, user_id, collab_session.id)
            return response(200, ended=1)
        ended = manager.sessions.end_session(args["session_token"])
        return response(200, ended=int(ended))
    ended = manager.sessions.end_user_sessions(project_id, user_id)
    return response(200, ended=ended)


# ── Access log ───────────────────────────────────────────────────────────


@sharing_api.route("/projects/<int:project_id>/access-log", methods=["GET"])
@rate_limit("sharing_read")
@protect
@safe
def access_log(project_id: int):
    args = access_log_query_schema.load(request.args.to_dict())
    audit = get_manager().access_log
    audit.get_project(project_id)
    events = audit.list_events(
        project_id,
        current_user_id(),
        event_type=args.get("event_type"),
        filter_actor_id=args.get("actor_id"),
        success=args.get("success"),
        since=to_naive_utc(args.get("since")),
        until=to_naive_utc(args.get("until")),
        limit=args["limit"],
    )
    if args["format"] == "csv":
        resp = make_response(audit.to_csv(events), 200)
        resp.headers["Content-Type"] = "text/csv; charset=utf-8"
        resp.headers["Content-Disposition"] = (
            f"attachment; filename=access-log-{project_id}.csv"
        )
        return resp
    return response(200, events=access_events_schema.dump(events), count=len(events))
