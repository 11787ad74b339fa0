import datetime
from typing import Callable, Optional

from .exceptions import ProjectNotFound, Unauthorized
from .models.sharing import CollaboratorStatus, Project
from .permissions import authorize, PermissionLevel
from .repository import SharingRepository
from .utils.transaction import RetryPolicy


class BaseManager(object):
    """
    The parent class for all sharing Managers.

    Holds the store, the access log, the clock and the retry policy, and
    resolves an actor's effective permission level from the store at
    decision time. Nothing here is cached across calls.

    :param repository: the ``SharingRepository`` to read and write through
    :param access_log: ``AccessLog`` receiving events, None for the access
        log itself
    :param clock: callable returning the current naive UTC datetime
    :param retry_policy: transient store failure policy
    """

    def __init__(
        self,
        repository: SharingRepository,
        access_log=None,
        clock: Optional[Callable[[], datetime.datetime]] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.repository = repository
        self.access_log = access_log
        self.clock = clock or datetime.datetime.utcnow
        self.retry_policy = retry_policy or RetryPolicy()

    def now(self) -> datetime.datetime:
        return self.clock()

    def get_project(self, project_id: int) -> Project:
        project = self.repository.get_project(project_id)
        if project is None:
            raise ProjectNotFound()
        return project

    def get_permission_level(
        self, project_id: int, user_id: Optional[int]
    ) -> Optional[PermissionLevel]:
        """
        Effective level of ``user_id`` on a project: ``owner`` for the
        owner, the row level for an accepted collaborator, otherwise None.
        """
        if user_id is None:
            return None
        project = self.get_project(project_id)
        if project.owner_id == user_id:
            return PermissionLevel.OWNER
        collaborator = self.repository.get_open_collaborator(project_id, user_id)
        if collaborator is None or collaborator.status != CollaboratorStatus.ACCEPTED.value:
            return None
        return collaborator.level

    def require_level(
        self,
        project_id: int,
        actor_id: Optional[int],
        required: PermissionLevel,
        action: str,
        target: Optional[str] = None,
    ) -> PermissionLevel:
        """
        Return the actor's level or raise ``Unauthorized``, recording the
        denied attempt in the access log.
        """
        level = self.get_permission_level(project_id, actor_id)
        if not authorize(level, required):
            error = Unauthorized()
            self.record_denied(project_id, actor_id, action, target, error)
            raise error
        return level

    def record_denied(self, project_id, actor_id, action, target, error):
        if self.access_log is not None:
            self.access_log.record_denied(project_id, actor_id, action, target, error)
