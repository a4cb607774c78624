from pydantic import BaseModel, EmailStr, Field, field_validator
from datetime import datetime
from typing import Optional, List

from models import Priority, ProjectRole, ProjectStatus, UserRole


HEX_COLOR_PATTERN = r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$"


def _upper_enum_value(value):
    # Clients historically sent lower-case priority/status/role names
    if isinstance(value, str):
        return value.strip().upper().replace(" ", "_").replace("-", "_")
    return value


# User schemas
class UserSummary(BaseModel):
    id: str
    name: str
    email: str
    avatar: Optional[str] = None

    class Config:
        from_attributes = True


class User(UserSummary):
    role: UserRole
    is_active: bool
    last_login_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class AuthResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: User


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    avatar: Optional[str] = Field(None, pattern=r"^https?://", max_length=512)


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8, max_length=100)


class AvatarUpdate(BaseModel):
    avatar: Optional[str] = Field(None, pattern=r"^https?://", max_length=512)


# Pagination
class Pagination(BaseModel):
    current: int
    pages: int
    total: int


# Project schemas
class ColumnIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    order: int = Field(0, ge=0)
    color: str = Field("#6B7280", pattern=HEX_COLOR_PATTERN)


class Column(ColumnIn):
    id: str

    class Config:
        from_attributes = True


class Tag(BaseModel):
    id: str
    name: str

    class Config:
        from_attributes = True


class ProjectBase(BaseModel):
    description: Optional[str] = Field(None, max_length=500)
    due_date: Optional[datetime] = None
    priority: Optional[Priority] = None
    color: Optional[str] = Field(None, pattern=HEX_COLOR_PATTERN)
    allow_comments: Optional[bool] = None
    allow_file_uploads: Optional[bool] = None
    notifications_enabled: Optional[bool] = None

    @field_validator("priority", mode="before")
    @classmethod
    def normalize_priority(cls, value):
        return _upper_enum_value(value)


class ProjectCreate(ProjectBase):
    name: str = Field(..., min_length=2, max_length=100)
    tags: List[str] = Field(default_factory=list)
    columns: Optional[List[ColumnIn]] = None


class ProjectUpdate(ProjectBase):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    status: Optional[ProjectStatus] = None
    tags: Optional[List[str]] = None
    columns: Optional[List[ColumnIn]] = None

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, value):
        return _upper_enum_value(value)


class MemberCreate(BaseModel):
    email: EmailStr
    role: ProjectRole = ProjectRole.MEMBER

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, value):
        return _upper_enum_value(value)


class Member(BaseModel):
    user_id: str
    project_id: str
    role: ProjectRole
    joined_at: Optional[datetime] = None
    user: UserSummary

    class Config:
        from_attributes = True


class ProjectSummary(BaseModel):
    id: str
    name: str
    color: str

    class Config:
        from_attributes = True


class Project(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    status: ProjectStatus
    priority: Priority
    color: str
    due_date: Optional[datetime] = None
    owner_id: str
    owner: UserSummary
    allow_comments: bool
    allow_file_uploads: bool
    notifications_enabled: bool
    members: List[Member] = Field(default_factory=list)
    columns: List[Column] = Field(default_factory=list)
    tags: List[Tag] = Field(default_factory=list)
    task_count: int = 0
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ProjectPage(BaseModel):
    items: List[Project] = []
    pagination: Pagination


# Comment schemas
class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=1000)


class CommentUpdate(CommentCreate):
    pass


class Comment(BaseModel):
    id: str
    task_id: str
    author_id: str
    author: Optional[UserSummary] = None
    content: str
    is_edited: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# Task schemas
class TaskBase(BaseModel):
    description: Optional[str] = Field(None, max_length=2000)
    priority: Optional[Priority] = None
    due_date: Optional[datetime] = None
    start_date: Optional[datetime] = None
    estimated_hours: Optional[float] = Field(None, ge=0, description="Estimated hours (must be >= 0)")

    @field_validator("priority", mode="before")
    @classmethod
    def normalize_priority(cls, value):
        return _upper_enum_value(value)


class TaskCreate(TaskBase):
    title: str = Field(..., min_length=1, max_length=200)
    status: Optional[str] = Field(None, min_length=1, max_length=100)
    assignee_id: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class TaskUpdate(TaskBase):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    status: Optional[str] = Field(None, min_length=1, max_length=100)
    assignee_id: Optional[str] = None
    actual_hours: Optional[float] = Field(None, ge=0, description="Actual hours spent (must be >= 0)")
    position: Optional[int] = Field(None, ge=0)
    is_archived: Optional[bool] = None
    tags: Optional[List[str]] = None


class Watcher(BaseModel):
    user_id: str
    user: UserSummary

    class Config:
        from_attributes = True


class Task(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    project_id: str
    project: Optional[ProjectSummary] = None
    creator_id: str
    creator: Optional[UserSummary] = None
    assignee_id: Optional[str] = None
    assignee: Optional[UserSummary] = None
    status: str
    priority: Priority
    due_date: Optional[datetime] = None
    start_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    position: int
    is_archived: bool
    tags: List[Tag] = Field(default_factory=list)
    comment_count: int = 0
    is_overdue: bool = False
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TaskDetail(Task):
    comments: List[Comment] = Field(default_factory=list)
    watchers: List[Watcher] = Field(default_factory=list)

    class Config:
        from_attributes = True


class TaskPage(BaseModel):
    items: List[Task] = []
    pagination: Pagination


# Dashboard schemas
class TaskStats(BaseModel):
    total: int = 0
    todo: int = 0
    in_progress: int = 0
    review: int = 0
    done: int = 0
    overdue: int = 0


class Dashboard(BaseModel):
    task_stats: TaskStats
    upcoming_tasks: List[Task] = []
    recent_activity: List[Task] = []
