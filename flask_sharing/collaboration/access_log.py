"""
Access Log

Append-only record of permission relevant events on a project. Successful
mutations add their event inside the caller's transaction, so the event and
the change commit together. Denied attempts are written in a transaction of
their own so they survive the failing request.
"""

import csv
import datetime
import io
import logging
from typing import Any, Dict, Iterable, List, Optional

from ..basemanager import BaseManager
from ..const import EVENT_ACCESS_DENIED, EVENT_TYPES, LOGMSG_WAR_ACCESS_DENIED
from ..exceptions import SharingError, ValidationError
from ..models.sharing import AccessEvent
from ..permissions import PermissionLevel
from ..utils.transaction import retry_on_transient

log = logging.getLogger(__name__)

CSV_COLUMNS = (
    "id",
    "timestamp",
    "event_type",
    "actor_id",
    "target",
    "success",
    "metadata",
)


class AccessLog(BaseManager):
    """Event sink and reader for the ``access_events`` table."""

    def record(
        self,
        project_id: Optional[int],
        actor_id: Optional[int],
        event_type: str,
        target: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        success: bool = True,
    ) -> AccessEvent:
        """Add an event to the current transaction; the caller commits."""
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown access event type: {event_type}")
        return self.repository.add_event(
            project_id=project_id,
            actor_id=actor_id,
            event_type=event_type,
            target=target,
            success=success,
            timestamp=self.now(),
            event_metadata=metadata or {},
        )

    @retry_on_transient
    def record_denied(
        self,
        project_id: Optional[int],
        actor_id: Optional[int],
        action: str,
        target: Optional[str],
        error: SharingError,
    ) -> AccessEvent:
        """Persist a failed privileged attempt in its own transaction."""
        log.warning(
            LOGMSG_WAR_ACCESS_DENIED.format(action, project_id, actor_id, error.error_code)
        )
        self.repository.rollback()
        event = self.record(
            project_id,
            actor_id,
            EVENT_ACCESS_DENIED,
            target=target,
            metadata={"action": action, "error_code": error.error_code},
            success=False,
        )
        self.repository.commit()
        return event

    def list_events(
        self,
        project_id: int,
        actor_id: int,
        event_type: Optional[str] = None,
        filter_actor_id: Optional[int] = None,
        success: Optional[bool] = None,
        since: Optional[datetime.datetime] = None,
        until: Optional[datetime.datetime] = None,
        limit: Optional[int] = 100,
    ) -> List[AccessEvent]:
        """
        Events of a project, newest first. Only admins and the owner may
        read the log.
        """
        self.require_level(
            project_id, actor_id, PermissionLevel.ADMIN, "access_log_view"
        )
        if event_type is not None and event_type not in EVENT_TYPES:
            raise ValidationError(
                f"Unknown event type: {event_type}", field_name="event_type"
            )
        if since and until and since > until:
            raise ValidationError("since must not be after until", field_name="since")
        return self.repository.list_events(
            project_id,
            event_type=event_type,
            actor_id=filter_actor_id,
            success=success,
            since=since,
            until=until,
            limit=limit,
        )

    @staticmethod
    def to_csv(events: Iterable[AccessEvent]) -> str:
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(CSV_COLUMNS)
        for event in events:
            writer.writerow(
                [
                    event.id,
                    event.timestamp.isoformat(),
                    event.event_type,
                    event.actor_id if event.actor_id is not None else "",
                    event.target or "",
                    "true" if event.success else "false",
                    ";".join(
                        f"{key}={value}"
                        for key, value in sorted((event.event_metadata or {}).items())
                    ),
                ]
            )
        return output.getvalue()
