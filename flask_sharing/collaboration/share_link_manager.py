"""
Share Link Manager

Issues, resolves and revokes tokenized project access grants.

A link is usable while it is active, not expired and has quota left. Expiry
and quota exhaustion are never written back; they are computed whenever the
link is read. Resolution consumes quota with one guarded UPDATE, so N
resolutions racing for the last slot yield exactly one success.
"""

import datetime
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Union

from ..basemanager import BaseManager
from ..const import (
    DEFAULT_MAX_ACCESS_COUNT,
    DEFAULT_MAX_ACCESS_COUNT_LIMIT,
    DEFAULT_TOKEN_BYTES,
    EVENT_SHARE_LINK_ACCESSED,
    EVENT_SHARE_LINK_CREATED,
    EVENT_SHARE_LINK_REVOKED,
    LOGMSG_INF_LINK_CREATED,
    LOGMSG_INF_LINK_REVOKED,
    LOGMSG_WAR_LINK_REJECTED,
    MIN_TOKEN_BYTES,
)
from ..exceptions import (
    DomainNotAllowed,
    LinkExpired,
    LinkNotFound,
    LinkQuotaExhausted,
    LinkRevoked,
    LoginRequired,
    SharingError,
    ValidationError,
)
from ..models.sharing import ShareLink, User
from ..permissions import ensure_assignable, LINK_LEVELS, PermissionLevel
from ..utils.transaction import retry_on_transient

log = logging.getLogger(__name__)

MAX_EXPIRES_IN_HOURS = 24 * 365


@dataclass
class LinkResolution:
    """What a successful resolution grants."""

    project_id: int
    permission_level: PermissionLevel
    link_id: int
    remaining_uses: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "permission_level": self.permission_level.value,
            "link_id": self.link_id,
            "remaining_uses": self.remaining_uses,
        }


class ShareLinkManager(BaseManager):
    """
    :param base_url: prefix of the public share URLs
    :param token_bytes: random bytes per token (at least 16, 128 bits)
    :param default_max_access_count: quota used when the caller gives none
    :param max_access_count_limit: upper bound accepted for quotas
    """

    def __init__(
        self,
        repository,
        access_log,
        base_url: str = "",
        token_bytes: int = DEFAULT_TOKEN_BYTES,
        default_max_access_count: int = DEFAULT_MAX_ACCESS_COUNT,
        max_access_count_limit: int = DEFAULT_MAX_ACCESS_COUNT_LIMIT,
        **kwargs,
    ):
        super().__init__(repository, access_log=access_log, **kwargs)
        if token_bytes < MIN_TOKEN_BYTES:
            raise ValueError(
                f"Share link tokens need at least {MIN_TOKEN_BYTES} random bytes"
            )
        self.base_url = base_url.rstrip("/")
        self.token_bytes = token_bytes
        self.default_max_access_count = default_max_access_count
        self.max_access_count_limit = max_access_count_limit

    def generate_token(self) -> str:
        return secrets.token_urlsafe(self.token_bytes)

    def share_url(self, link: ShareLink) -> str:
        return f"{self.base_url}/projects/{link.project_id}/shared/{link.token}"

    # ── Create ───────────────────────────────────────────────────────────

    @retry_on_transient
    def create_link(
        self,
        project_id: int,
        actor_id: int,
        permission_level: Union[str, PermissionLevel] = PermissionLevel.VIEWER,
        max_access_count: Optional[int] = None,
        expires_in_hours: Optional[float] = None,
        domain_restrictions: Optional[Iterable[str]] = None,
        requires_login: bool = False,
        allow_api_access: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ShareLink:
        """
        Issue a new link for a project.

        :raises Unauthorized: actor is not admin or owner
        :raises InvalidPermissionLevel: level other than viewer or editor
        :raises ValidationError: quota or expiry out of range, bad domains
        """
        self.get_project(project_id)
        self.require_level(
            project_id, actor_id, PermissionLevel.ADMIN, EVENT_SHARE_LINK_CREATED
        )
        level = ensure_assignable(permission_level, LINK_LEVELS)
        if max_access_count is None:
            max_access_count = self.default_max_access_count
        if (
            isinstance(max_access_count, bool)
            or not isinstance(max_access_count, int)
            or not 1 <= max_access_count <= self.max_access_count_limit
        ):
            raise ValidationError(
                f"Max access count must be between 1 and {self.max_access_count_limit}",
                field_name="max_access_count",
            )
        now = self.now()
        expires_at = None
        if expires_in_hours is not None:
            if not 0 < expires_in_hours <= MAX_EXPIRES_IN_HOURS:
                raise ValidationError(
                    "Expiration must be in the future and at most one year away",
                    field_name="expires_in_hours",
                )
            expires_at = now + datetime.timedelta(hours=expires_in_hours)
        domains = self._normalize_domains(domain_restrictions)

        link = self.repository.add_link(
            project_id=project_id,
            created_by=actor_id,
            token=self.generate_token(),
            permission_level=level.value,
            max_access_count=max_access_count,
            current_access_count=0,
            expires_at=expires_at,
            is_active=True,
            requires_login=bool(requires_login),
            allow_api_access=bool(allow_api_access),
            domain_restrictions=domains,
            link_metadata=dict(metadata or {}),
            created_at=now,
        )
        self.access_log.record(
            project_id,
            actor_id,
            EVENT_SHARE_LINK_CREATED,
            target=str(link.id),
            metadata={
                "permission_level": level.value,
                "max_access_count": max_access_count,
                "expires_at": expires_at.isoformat() if expires_at else None,
            },
        )
        self.repository.commit()
        log.info(LOGMSG_INF_LINK_CREATED.format(link.id, project_id))
        return link

    # ── Resolve ──────────────────────────────────────────────────────────

    @retry_on_transient
    def resolve(self, token: str, user: Optional[User] = None) -> LinkResolution:
        """
        Validate a token and consume one use of it.

        :param user: the signed in user, if any, for links restricted to
            logged in users or to email domains
        :raises LinkNotFound: unknown token
        :raises LinkRevoked: the link was revoked
        :raises LinkExpired: ``expires_at`` is past
        :raises LinkQuotaExhausted: no uses left
        """
        link = self.repository.get_link_by_token(token) if token else None
        if link is None:
            raise LinkNotFound()
        now = self.now()
        self._check_usable(link, now)
        self._check_audience(link, user)

        if not self.repository.increment_link_access(link.id, now):
            # Lost the race, or the link changed since it was read
            self.repository.rollback()
            link = self.repository.get_link(link.id)
            self._check_usable(link, self.now())
            raise self._reject(link, LinkQuotaExhausted())
        self.access_log.record(
            link.project_id,
            user.id if user is not None else None,
            EVENT_SHARE_LINK_ACCESSED,
            target=str(link.id),
        )
        self.repository.commit()
        return LinkResolution(
            project_id=link.project_id,
            permission_level=link.level,
            link_id=link.id,
            remaining_uses=link.max_access_count - link.current_access_count,
        )

    # ── Revoke ───────────────────────────────────────────────────────────

    @retry_on_transient
    def revoke(self, project_id: int, actor_id: int, link_id: int) -> ShareLink:
        """
        Deactivate a link. Committed before returning, so the next
        resolution fails with ``LinkRevoked``.
        """
        self.get_project(project_id)
        self.require_level(
            project_id,
            actor_id,
            PermissionLevel.ADMIN,
            EVENT_SHARE_LINK_REVOKED,
            target=str(link_id),
        )
        link = self.repository.get_link(link_id)
        if link is None or link.project_id != project_id:
            raise LinkNotFound()
        # Revoking an already revoked link is a no-op success
        if self.repository.deactivate_link(link_id, self.now()):
            self.access_log.record(
                project_id, actor_id, EVENT_SHARE_LINK_REVOKED, target=str(link_id)
            )
            self.repository.commit()
            log.info(LOGMSG_INF_LINK_REVOKED.format(link_id, project_id))
        else:
            self.repository.rollback()
        return self.repository.get_link(link_id)

    # ── Queries ──────────────────────────────────────────────────────────

    def list_links(self, project_id: int, actor_id: int) -> List[ShareLink]:
        self.get_project(project_id)
        self.require_level(project_id, actor_id, PermissionLevel.ADMIN, "project_share")
        return self.repository.list_links(project_id)

    def describe(self, link: ShareLink) -> Dict[str, Any]:
        """Link attributes plus the read-time derived state."""
        now = self.now()
        return {
            "id": link.id,
            "project_id": link.project_id,
            "created_by": link.created_by,
            "token": link.token,
            "share_url": self.share_url(link),
            "permission_level": link.permission_level,
            "max_access_count": link.max_access_count,
            "current_access_count": link.current_access_count,
            "expires_at": link.expires_at,
            "is_active": link.is_active,
            "requires_login": link.requires_login,
            "allow_api_access": link.allow_api_access,
            "domain_restrictions": list(link.domain_restrictions or []),
            "metadata": dict(link.link_metadata or {}),
            "created_at": link.created_at,
            "revoked_at": link.revoked_at,
            "last_accessed_at": link.last_accessed_at,
            "is_expired": link.is_expired(now),
            "is_max_access_reached": link.is_quota_exhausted,
            "is_usable": link.is_usable(now),
        }

    # ── Internals ────────────────────────────────────────────────────────

    def _check_usable(self, link: ShareLink, now: datetime.datetime) -> None:
        if not link.is_active:
            raise self._reject(link, LinkRevoked())
        if link.is_expired(now):
            raise self._reject(link, LinkExpired())
        if link.is_quota_exhausted:
            raise self._reject(link, LinkQuotaExhausted())

    def _check_audience(self, link: ShareLink, user: Optional[User]) -> None:
        domains = link.domain_restrictions or []
        if (link.requires_login or domains) and user is None:
            raise self._reject(link, LoginRequired())
        if domains and user.email_domain not in domains:
            raise self._reject(link, DomainNotAllowed(), actor_id=user.id)

    def _reject(
        self, link: ShareLink, error: SharingError, actor_id: Optional[int] = None
    ) -> SharingError:
        log.warning(LOGMSG_WAR_LINK_REJECTED.format(link.id, error.error_code))
        self.record_denied(
            link.project_id, actor_id, EVENT_SHARE_LINK_ACCESSED, str(link.id), error
        )
        return error

    @staticmethod
    def _normalize_domains(domains: Optional[Iterable[str]]) -> List[str]:
        if domains is None:
            return []
        if isinstance(domains, str):
            domains = [domains]
        result = []
        for domain in domains:
            if not isinstance(domain, str) or not domain.strip():
                raise ValidationError(
                    "Invalid domain restriction. All domains must be valid strings",
                    field_name="domain_restrictions",
                )
            domain = domain.strip().lower().lstrip("@")
            if "." not in domain or " " in domain:
                raise ValidationError(
                    f"Invalid domain restriction: {domain}",
                    field_name="domain_restrictions",
                )
            if domain not in result:
                result.append(domain)
        return result
