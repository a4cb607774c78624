"""
Project service: projects, their columns, tags and members.

Every access decision goes through the ``MembershipAuthority``. Mutations run
in a single transaction and return an ``Outcome`` carrying the realtime events
for the boundary to publish.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import exists, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import schemas
from auth.permissions import MembershipAuthority
from database import transaction
from errors import (
    AlreadyMember,
    CannotRemoveOwner,
    InsufficientPermissions,
    NotFound,
    NotFoundOrDenied,
    UserNotFound,
    ValidationFailed,
)
from models import (
    DEFAULT_COLUMNS,
    Project,
    ProjectColumn,
    ProjectMember,
    ProjectRole,
    ProjectStatus,
    ProjectTag,
)
from realtime.events import Event, EventKind, Outcome, to_payload
from services.query_utils import build_pagination, clamp_page, clean_tag_names, parse_enum
from services.user_service import UserService
from time_utils import coerce_datetime, utc_now

logger = logging.getLogger(__name__)

# Columns that may not be set to NULL through an update patch
NON_NULLABLE_FIELDS = frozenset(
    {"name", "status", "priority", "color", "allow_comments", "allow_file_uploads", "notifications_enabled"}
)

MAX_PAGE_SIZE = 100


class ProjectService:
    def __init__(self, db: Session, authority: MembershipAuthority):
        self.db = db
        self.authority = authority

    # ============== Queries ==============

    def get_by_id(self, project_id: str, user_id: str) -> Project:
        """
        Load a project the user owns or is a member of.

        Raises:
            NotFoundOrDenied: the project does not exist, or the user has no
                access to it. Callers cannot tell the two apart.
        """
        project = self.db.query(Project).filter(Project.id == project_id).first()
        if project is None:
            logger.info(f"Project {project_id} not found")
            raise NotFoundOrDenied()

        if project.owner_id != user_id and not self.authority.is_member(project_id, user_id):
            logger.info(f"User {user_id} has no access to project {project_id}")
            raise NotFoundOrDenied()

        return project

    def list_for_user(
        self,
        user_id: str,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Dict[str, Any]:
        page, limit = clamp_page(page, limit, MAX_PAGE_SIZE)
        logger.debug(f"User {user_id} listing projects: status={status}, search={search}, page={page}, limit={limit}")

        is_member = exists().where(ProjectMember.project_id == Project.id, ProjectMember.user_id == user_id)
        query = self.db.query(Project).filter(or_(Project.owner_id == user_id, is_member))

        project_status = parse_enum(ProjectStatus, status, "status")
        if project_status is not None:
            query = query.filter(Project.status == project_status)

        if search and search.strip():
            pattern = f"%{search.strip().lower()}%"
            query = query.filter(
                or_(func.lower(Project.name).like(pattern), func.lower(Project.description).like(pattern))
            )

        total = query.count()
        items = (
            query.order_by(Project.updated_at.desc(), Project.id)
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        logger.info(f"User {user_id} retrieved {len(items)} of {total} projects")
        return {"items": items, "pagination": build_pagination(page, limit, total)}

    def list_members(self, project_id: str, user_id: str) -> List[ProjectMember]:
        project = self.get_by_id(project_id, user_id)
        return list(project.members)

    # ============== Mutations ==============

    def create_project(self, data: schemas.ProjectCreate, owner_id: str) -> Outcome[Project]:
        """
        Create a project owned by ``owner_id``.

        Project row, OWNER membership, columns and tags are written in one
        transaction: either all of them exist afterwards or none do.
        """
        logger.debug(f"User {owner_id} creating project: {data.name}")

        fields = data.model_dump(exclude={"tags", "columns"}, exclude_none=True)
        if "due_date" in fields:
            fields["due_date"] = coerce_datetime(fields["due_date"])

        if data.columns:
            columns = [column.model_dump() for column in data.columns]
        else:
            columns = [dict(column) for column in DEFAULT_COLUMNS]

        project = Project(**fields, owner_id=owner_id)
        with transaction(self.db):
            self.db.add(project)
            self.db.flush()  # Get project ID without committing

            self.db.add(ProjectMember(project_id=project.id, user_id=owner_id, role=ProjectRole.OWNER))
            for column in columns:
                self.db.add(ProjectColumn(project_id=project.id, **column))
            for name in clean_tag_names(data.tags):
                self.db.add(ProjectTag(project_id=project.id, name=name))

        self.authority.forget(project.id, owner_id)
        logger.info(f"Project created: {project.name} (ID: {project.id}) by user {owner_id}")

        event = Event(
            kind=EventKind.project_created,
            data=to_payload(schemas.Project, project),
            actor_id=owner_id,
        )
        return Outcome(project, [event])

    def update(self, project_id: str, patch: schemas.ProjectUpdate, user_id: str) -> Outcome[Project]:
        """
        Apply a patch as an OWNER or ADMIN.

        Columns and tags present in the patch replace the existing ones
        wholesale (delete all, then insert), not merged.
        """
        project = self.get_by_id(project_id, user_id)
        self.authority.assert_editor(project_id, user_id)

        update_data = patch.model_dump(exclude_unset=True)
        columns = update_data.pop("columns", None)
        tags = update_data.pop("tags", None)

        with transaction(self.db):
            for key, value in update_data.items():
                if key == "due_date":
                    value = coerce_datetime(value)
                    if value is None:
                        continue
                elif value is None and key in NON_NULLABLE_FIELDS:
                    continue
                setattr(project, key, value)

            if columns is not None:
                project.columns.clear()
                self.db.flush()
                for column in columns:
                    self.db.add(ProjectColumn(project_id=project.id, **column))

            if tags is not None:
                project.tags.clear()
                # Old rows must be gone before names are re-inserted (unique per project)
                self.db.flush()
                for name in clean_tag_names(tags):
                    self.db.add(ProjectTag(project_id=project.id, name=name))

            project.updated_at = utc_now()

        logger.info(f"Project updated: {project.name} (ID: {project_id}) by user {user_id}")
        event = Event(
            kind=EventKind.project_updated,
            data=to_payload(schemas.Project, project),
            actor_id=user_id,
            project_id=project_id,
        )
        return Outcome(project, [event])

    def delete(self, project_id: str, user_id: str) -> Outcome[None]:
        """Delete a project and everything it owns. Only the owner may do this."""
        project = self.get_by_id(project_id, user_id)

        if project.owner_id != user_id:
            logger.info(f"User {user_id} attempted to delete project {project_id} without being its owner")
            raise InsufficientPermissions("Only project owner can delete the project")

        name = project.name
        with transaction(self.db):
            self.db.delete(project)

        self.authority.forget(project_id, user_id)
        logger.info(f"Project deleted: {name} (ID: {project_id})")

        event = Event(
            kind=EventKind.project_deleted,
            data={"id": project_id, "name": name},
            actor_id=user_id,
        )
        return Outcome(None, [event])

    def add_member(
        self,
        project_id: str,
        email: str,
        role: ProjectRole = ProjectRole.MEMBER,
        user_id: Optional[str] = None,
    ) -> Outcome[Project]:
        project = self.get_by_id(project_id, user_id)
        self.authority.assert_editor(project_id, user_id)

        role = ProjectRole(role)
        if role == ProjectRole.OWNER:
            # A project has exactly one owner, fixed at creation
            raise ValidationFailed(
                "Validation failed",
                errors=[{"field": "role", "message": "Role must be ADMIN or MEMBER"}],
            )

        user = UserService(self.db).find_by_email(email)
        if user is None:
            logger.info(f"Cannot add member to project {project_id}: no user with email {email}")
            raise UserNotFound()

        if self.authority.is_member(project_id, user.id):
            raise AlreadyMember()

        membership = ProjectMember(project_id=project_id, user_id=user.id, role=role)
        try:
            with transaction(self.db):
                self.db.add(membership)
        except IntegrityError:
            logger.info(f"Concurrent insert of membership ({user.id}, {project_id})")
            raise AlreadyMember()

        self.authority.forget(project_id, user.id)
        self.db.refresh(project)
        logger.info(f"User {user.id} added to project {project_id} with role {role.value} by {user_id}")

        event = Event(
            kind=EventKind.member_added,
            data=to_payload(schemas.Member, membership),
            actor_id=user_id,
            project_id=project_id,
        )
        return Outcome(project, [event])

    def remove_member(self, project_id: str, member_user_id: str, user_id: str) -> Outcome[None]:
        project = self.db.query(Project).filter(Project.id == project_id).first()
        if project is None:
            raise NotFoundOrDenied()

        # Checked before anything else: the owner can never be removed, whoever asks
        if member_user_id == project.owner_id:
            logger.info(f"User {user_id} attempted to remove owner of project {project_id}")
            raise CannotRemoveOwner()

        self.get_by_id(project_id, user_id)
        self.authority.assert_editor(project_id, user_id)

        membership = (
            self.db.query(ProjectMember)
            .filter(ProjectMember.project_id == project_id, ProjectMember.user_id == member_user_id)
            .first()
        )
        if membership is None:
            raise NotFound("Membership not found")

        with transaction(self.db):
            self.db.delete(membership)

        self.authority.forget(project_id, member_user_id)
        logger.info(f"User {member_user_id} removed from project {project_id} by {user_id}")

        event = Event(
            kind=EventKind.member_removed,
            data={"project_id": project_id, "user_id": member_user_id},
            actor_id=user_id,
            project_id=project_id,
        )
        return Outcome(None, [event])
