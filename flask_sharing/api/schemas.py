from marshmallow import fields, Schema, validate, validates_schema, ValidationError

from ..const import EVENT_TYPES


# ── Input ────────────────────────────────────────────────────────────────


class InviteSchema(Schema):
    """Schema for inviting a collaborator"""

    email = fields.String(required=True, validate=validate.Length(min=3, max=320))
    permission_level = fields.String(load_default="viewer")
    message = fields.String(allow_none=True, validate=validate.Length(max=1000))
    expires_at = fields.DateTime(allow_none=True)


class UpdatePermissionSchema(Schema):
    user_id = fields.Integer(required=True, strict=True)
    permission_level = fields.String(required=True)


class TargetUserSchema(Schema):
    user_id = fields.Integer(required=True)


class InvitationActionSchema(Schema):
    action = fields.String(required=True, validate=validate.OneOf(["accept", "decline"]))


class LinkCreateSchema(Schema):
    """Schema for creating share links"""

    permission_level = fields.String(load_default="viewer")
    max_access_count = fields.Integer(allow_none=True, strict=True)
    expires_in_hours = fields.Float(allow_none=True)
    domain_restrictions = fields.List(fields.String(), load_default=list)
    requires_login = fields.Boolean(load_default=False)
    allow_api_access = fields.Boolean(load_default=False)
    metadata = fields.Dict(load_default=dict)


class LinkTargetSchema(Schema):
    link_id = fields.Integer(required=True)


class HeartbeatSchema(Schema):
    """Schema for collaboration session heartbeats"""

    session_token = fields.String(
        required=True, validate=validate.Length(min=1, max=128)
    )
    activity = fields.String(allow_none=True, validate=validate.Length(max=200))
    device_info = fields.Dict(allow_none=True)
    cursor_position = fields.Raw(allow_none=True)
    selection_data = fields.Raw(allow_none=True)


class EndSessionSchema(Schema):
    session_token = fields.String(validate=validate.Length(min=1, max=128))
    session_id = fields.Integer()

    @validates_schema
    def validate_target(self, data, **kwargs):
        if "session_token" in data and "session_id" in data:
            raise ValidationError("Give either session_token or session_id, not both")


class AccessLogQuerySchema(Schema):
    event_type = fields.String(validate=validate.OneOf(EVENT_TYPES))
    actor_id = fields.Integer()
    success = fields.Boolean()
    since = fields.DateTime()
    until = fields.DateTime()
    limit = fields.Integer(load_default=100, validate=validate.Range(min=1, max=1000))
    format = fields.String(load_default="json", validate=validate.OneOf(["json", "csv"]))


class ListQuerySchema(Schema):
    include_terminal = fields.Boolean(load_default=False)


# ── Output ───────────────────────────────────────────────────────────────


class CollaboratorSchema(Schema):
    """Schema for collaborator rows"""

    id = fields.Integer()
    project_id = fields.Integer()
    user_id = fields.Integer()
    email = fields.Function(lambda obj: obj.user.email if obj.user else None)
    full_name = fields.Function(lambda obj: obj.user.full_name if obj.user else None)
    permission_level = fields.String()
    status = fields.String()
    invited_by = fields.Integer()
    message = fields.String(allow_none=True)
    created_at = fields.DateTime()
    expires_at = fields.DateTime(allow_none=True)
    accepted_at = fields.DateTime(allow_none=True)
    declined_at = fields.DateTime(allow_none=True)
    revoked_at = fields.DateTime(allow_none=True)
    updated_at = fields.DateTime(allow_none=True)


class InvitationSchema(CollaboratorSchema):
    """A pending invitation as seen by the invitee"""

    project_name = fields.Function(lambda obj: obj.project.name if obj.project else None)
    inviter_email = fields.Function(
        lambda obj: obj.inviter.email if obj.inviter else None
    )


class ShareLinkSchema(Schema):
    """Schema for share links, with the derived usability flags"""

    id = fields.Integer()
    project_id = fields.Integer()
    created_by = fields.Integer()
    token = fields.String()
    share_url = fields.String()
    permission_level = fields.String()
    max_access_count = fields.Integer()
    current_access_count = fields.Integer()
    expires_at = fields.DateTime(allow_none=True)
    is_active = fields.Boolean()
    requires_login = fields.Boolean()
    allow_api_access = fields.Boolean()
    domain_restrictions = fields.List(fields.String())
    metadata = fields.Dict()
    created_at = fields.DateTime()
    revoked_at = fields.DateTime(allow_none=True)
    last_accessed_at = fields.DateTime(allow_none=True)
    is_expired = fields.Boolean()
    is_max_access_reached = fields.Boolean()
    is_usable = fields.Boolean()


class PresenceSchema(Schema):
    user_id = fields.Integer()
    is_online = fields.Boolean()
    last_activity = fields.DateTime()
    current_activity = fields.String(allow_none=True)
    session_count = fields.Integer()
    devices = fields.List(fields.Dict())


class SessionSchema(Schema):
    id = fields.Integer()
    project_id = fields.Integer()
    user_id = fields.Integer()
    session_token = fields.String()
    last_activity = fields.DateTime()
    current_activity = fields.String(allow_none=True)
    device_info = fields.Dict(allow_none=True)
    cursor_position = fields.Raw(allow_none=True)
    selection_data = fields.Raw(allow_none=True)
    created_at = fields.DateTime()


class AccessEventSchema(Schema):
    id = fields.Integer()
    project_id = fields.Integer(allow_none=True)
    actor_id = fields.Integer(allow_none=True)
    event_type = fields.String()
    target = fields.String(allow_none=True)
    success = fields.Boolean()
    timestamp = fields.DateTime()
    metadata = fields.Dict(attribute="event_metadata")


invite_schema = InviteSchema()
update_permission_schema = UpdatePermissionSchema()
target_user_schema = TargetUserSchema()
invitation_action_schema = InvitationActionSchema()
link_create_schema = LinkCreateSchema()
link_target_schema = LinkTargetSchema()
heartbeat_schema = HeartbeatSchema()
end_session_schema = EndSessionSchema()
access_log_query_schema = AccessLogQuerySchema()
list_query_schema = ListQuerySchema()

collaborator_schema = CollaboratorSchema()
collaborators_schema = CollaboratorSchema(many=True)
invitations_schema = InvitationSchema(many=True)
share_link_schema = ShareLinkSchema()
presence_schema = PresenceSchema(many=True)
session_schema = SessionSchema()
access_events_schema = AccessEventSchema(many=True)
