"""
Project-level membership authority.

This is the single place that answers "is user X a member/editor of project
P". Services and route dependencies ask it instead of inspecting membership
rows themselves, so the authorization policy can be tested in isolation.
"""

import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from errors import AccessDenied, InsufficientPermissions
from models import EDITOR_ROLES, ProjectMember, ProjectRole

logger = logging.getLogger(__name__)

_MISSING = object()


class MembershipAuthority:
    """
    Read-only role lookups against the project_members table.

    An instance lives for one request. Lookups are memoized for that lifetime
    only; services call ``forget`` after they change a membership row.
    """

    def __init__(self, db: Session):
        self.db = db
        self._roles: Dict[Tuple[str, str], Optional[ProjectRole]] = {}

    def role_of(self, project_id: str, user_id: str) -> Optional[ProjectRole]:
        """Return the user's role in the project, or None if not a member."""
        key = (project_id, user_id)
        cached = self._roles.get(key, _MISSING)
        if cached is not _MISSING:
            return cached

        membership = (
            self.db.query(ProjectMember)
            .filter(ProjectMember.project_id == project_id, ProjectMember.user_id == user_id)
            .first()
        )
        role = membership.role if membership is not None else None
        self._roles[key] = role
        logger.debug(f"Resolved role of user {user_id} in project {project_id}: {role}")
        return role

    def is_member(self, project_id: str, user_id: str) -> bool:
        return self.role_of(project_id, user_id) is not None

    def is_editor(self, project_id: str, user_id: str) -> bool:
        return self.role_of(project_id, user_id) in EDITOR_ROLES

    def assert_member(self, project_id: str, user_id: str) -> ProjectRole:
        """
        Require membership of the project.

        Raises:
            AccessDenied: user has no membership row for the project
        """
        role = self.role_of(project_id, user_id)
        if role is None:
            logger.info(f"User {user_id} has no membership in project {project_id}")
            raise AccessDenied()
        return role

    def assert_editor(self, project_id: str, user_id: str) -> ProjectRole:
        """
        Require an OWNER or ADMIN role in the project.

        Raises:
            AccessDenied: user is not a member at all
            InsufficientPermissions: user is a plain member
        """
        role = self.assert_member(project_id, user_id)
        if role not in EDITOR_ROLES:
            logger.info(f"User {user_id} has role '{role.value}' in project {project_id}, but OWNER or ADMIN is required")
            raise InsufficientPermissions("Insufficient permissions to edit this project")
        return role

    def project_ids_for(self, user_id: str) -> List[str]:
        """IDs of every project the user is a member of."""
        rows = self.db.query(ProjectMember.project_id).filter(ProjectMember.user_id == user_id).all()
        logger.debug(f"User {user_id} has {len(rows)} project memberships")
        return [row.project_id for row in rows]

    def forget(self, project_id: str, user_id: str) -> None:
        self._roles.pop((project_id, user_id), None)
