import enum
import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    select,
)
from sqlalchemy.orm import column_property, relationship

from database import Base
from time_utils import is_overdue, utc_now


def new_id() -> str:
    return str(uuid.uuid4())


class UserRole(str, enum.Enum):
    user = "user"
    admin = "admin"


class ProjectRole(str, enum.Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


class ProjectStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    ARCHIVED = "ARCHIVED"
    ON_HOLD = "ON_HOLD"


class Priority(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


# Roles allowed to edit project settings and manage members
EDITOR_ROLES = frozenset({ProjectRole.OWNER, ProjectRole.ADMIN})

# Statuses that mark a task as finished; completed_date follows them
COMPLETED_STATUSES = frozenset({"Done", "Completed"})

DEFAULT_TASK_STATUS = "To Do"

DEFAULT_COLUMNS = (
    {"name": "To Do", "order": 0, "color": "#EF4444"},
    {"name": "In Progress", "order": 1, "color": "#F59E0B"},
    {"name": "Review", "order": 2, "color": "#8B5CF6"},
    {"name": "Done", "order": 3, "color": "#10B981"},
)


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    password_hash = Column(String(255), nullable=False)
    avatar = Column(String(512))
    role = Column(Enum(UserRole, name="user_role"), nullable=False, default=UserRole.user)
    is_active = Column(Boolean, nullable=False, default=True)
    last_login_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    # Relationships
    owned_projects = relationship("Project", back_populates="owner")
    memberships = relationship("ProjectMember", back_populates="user")


class Project(Base):
    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    status = Column(Enum(ProjectStatus, name="project_status"), nullable=False, default=ProjectStatus.ACTIVE)
    priority = Column(Enum(Priority, name="priority"), nullable=False, default=Priority.MEDIUM)
    color = Column(String(7), nullable=False, default="#3B82F6")
    due_date = Column(DateTime(timezone=True))
    owner_id = Column(String(36), ForeignKey("users.id"), nullable=False)

    # Settings
    allow_comments = Column(Boolean, nullable=False, default=True)
    allow_file_uploads = Column(Boolean, nullable=False, default=True)
    notifications_enabled = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    # Relationships
    owner = relationship("User", back_populates="owned_projects")
    members = relationship(
        "ProjectMember", back_populates="project", cascade="all, delete-orphan", passive_deletes=True
    )
    columns = relationship(
        "ProjectColumn",
        back_populates="project",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ProjectColumn.order",
    )
    tags = relationship(
        "ProjectTag", back_populates="project", cascade="all, delete-orphan", passive_deletes=True
    )
    tasks = relationship(
        "Task", back_populates="project", cascade="all, delete-orphan", passive_deletes=True
    )


class ProjectMember(Base):
    __tablename__ = "project_members"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True)
    role = Column(Enum(ProjectRole, name="project_role"), nullable=False, default=ProjectRole.MEMBER)
    joined_at = Column(DateTime(timezone=True), default=utc_now)

    # Relationships
    user = relationship("User", back_populates="memberships")
    project = relationship("Project", back_populates="members")


class ProjectColumn(Base):
    __tablename__ = "project_columns"

    id = Column(String(36), primary_key=True, default=new_id)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(100), nullable=False)
    order = Column(Integer, nullable=False, default=0)
    color = Column(String(7), nullable=False, default="#6B7280")

    project = relationship("Project", back_populates="columns")


class ProjectTag(Base):
    __tablename__ = "project_tags"
    __table_args__ = (UniqueConstraint("project_id", "name", name="uq_project_tag_name"),)

    id = Column(String(36), primary_key=True, default=new_id)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(50), nullable=False)

    project = relationship("Project", back_populates="tags")
    task_links = relationship("TaskTag", back_populates="tag", cascade="all, delete-orphan", passive_deletes=True)


class Task(Base):
    __tablename__ = "tasks"
    __table_args__ = (Index("ix_tasks_lane", "project_id", "status", "position"),)

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String(200), nullable=False)
    description = Column(Text)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    creator_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    assignee_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"))

    # Free text; matches one of the project's column names
    status = Column(String(100), nullable=False, default=DEFAULT_TASK_STATUS)
    priority = Column(Enum(Priority, name="priority"), nullable=False, default=Priority.MEDIUM)

    due_date = Column(DateTime(timezone=True))
    start_date = Column(DateTime(timezone=True))
    completed_date = Column(DateTime(timezone=True))
    estimated_hours = Column(Numeric(10, 2))
    actual_hours = Column(Numeric(10, 2))

    position = Column(Integer, nullable=False, default=0)
    is_archived = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    # Relationships
    project = relationship("Project", back_populates="tasks")
    creator = relationship("User", foreign_keys=[creator_id])
    assignee = relationship("User", foreign_keys=[assignee_id])
    comments = relationship(
        "Comment",
        back_populates="task",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Comment.created_at",
    )
    watchers = relationship("TaskWatcher", back_populates="task", cascade="all, delete-orphan", passive_deletes=True)
    tag_links = relationship("TaskTag", back_populates="task", cascade="all, delete-orphan", passive_deletes=True)

    @property
    def tags(self) -> list:
        return [link.tag for link in self.tag_links]

    @property
    def is_overdue(self) -> bool:
        return is_overdue(self.due_date, self.status, COMPLETED_STATUSES)


class Comment(Base):
    __tablename__ = "comments"

    id = Column(String(36), primary_key=True, default=new_id)
    task_id = Column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    author_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    is_edited = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    # Relationships
    task = relationship("Task", back_populates="comments")
    author = relationship("User")


class TaskWatcher(Base):
    __tablename__ = "task_watchers"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    task_id = Column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    task = relationship("Task", back_populates="watchers")
    user = relationship("User")


class TaskTag(Base):
    __tablename__ = "task_tags"

    task_id = Column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True)
    tag_id = Column(String(36), ForeignKey("project_tags.id", ondelete="CASCADE"), primary_key=True)

    task = relationship("Task", back_populates="tag_links")
    tag = relationship("ProjectTag", back_populates="task_links")


# Counts are loaded with the row as correlated subqueries
Project.task_count = column_property(
    select(func.count(Task.id)).where(Task.project_id == Project.id).correlate_except(Task).scalar_subquery()
)
Task.comment_count = column_property(
    select(func.count(Comment.id)).where(Comment.task_id == Task.id).correlate_except(Comment).scalar_subquery()
)
