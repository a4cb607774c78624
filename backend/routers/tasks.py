import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

import schemas
from auth.dependencies import ProjectAccess, get_authority, get_current_user, get_project_access
from auth.permissions import MembershipAuthority
from database import get_db
from models import User
from realtime.broadcaster import Broadcaster, get_broadcaster, publish_after_response
from services.task_service import DEFAULT_TASK_PAGE_SIZE, MAX_TASK_PAGE_SIZE, TaskService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


# ============== Tasks ==============

@router.get("/project/{project_id}", response_model=schemas.TaskPage)
def list_project_tasks(
    status_filter: Optional[str] = Query(None, alias="status"),
    assignee: Optional[str] = None,
    priority: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_TASK_PAGE_SIZE, ge=1, le=MAX_TASK_PAGE_SIZE),
    access: ProjectAccess = Depends(get_project_access),
    authority: MembershipAuthority = Depends(get_authority),
    db: Session = Depends(get_db),
):
    """List the non-archived tasks of a project (requires membership)."""
    return TaskService(db, authority).list_for_project(
        access.project_id,
        access.user.id,
        status=status_filter,
        assignee_id=assignee,
        priority=priority,
        search=search,
        page=page,
        limit=limit,
    )


@router.post("/project/{project_id}", response_model=schemas.Task, status_code=status.HTTP_201_CREATED)
def create_task(
    task: schemas.TaskCreate,
    background_tasks: BackgroundTasks,
    access: ProjectAccess = Depends(get_project_access),
    authority: MembershipAuthority = Depends(get_authority),
    broadcaster: Broadcaster = Depends(get_broadcaster),
    db: Session = Depends(get_db),
):
    outcome = TaskService(db, authority).create_task(task, access.project_id, access.user.id)
    return publish_after_response(background_tasks, broadcaster, outcome)


@router.get("/{task_id}", response_model=schemas.TaskDetail)
def get_task(
    task_id: str,
    current_user: User = Depends(get_current_user),
    authority: MembershipAuthority = Depends(get_authority),
    db: Session = Depends(get_db),
):
    """Get a task with its comments and watchers."""
    return TaskService(db, authority).get_by_id(task_id, current_user.id)


@router.put("/{task_id}", response_model=schemas.Task)
def update_task(
    task_id: str,
    patch: schemas.TaskUpdate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    authority: MembershipAuthority = Depends(get_authority),
    broadcaster: Broadcaster = Depends(get_broadcaster),
    db: Session = Depends(get_db),
):
    """Update a task (creator, assignee, or project OWNER/ADMIN)."""
    outcome = TaskService(db, authority).update_task(task_id, patch, current_user.id)
    return publish_after_response(background_tasks, broadcaster, outcome)


@router.delete("/{task_id}")
def delete_task(
    task_id: str,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    authority: MembershipAuthority = Depends(get_authority),
    broadcaster: Broadcaster = Depends(get_broadcaster),
    db: Session = Depends(get_db),
):
    outcome = TaskService(db, authority).delete_task(task_id, current_user.id)
    publish_after_response(background_tasks, broadcaster, outcome)
    return {"message": "Task deleted successfully"}


# ============== Comments ==============

@router.post("/{task_id}/comments", response_model=schemas.Comment, status_code=status.HTTP_201_CREATED)
def add_comment(
    task_id: str,
    comment: schemas.CommentCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    authority: MembershipAuthority = Depends(get_authority),
    broadcaster: Broadcaster = Depends(get_broadcaster),
    db: Session = Depends(get_db),
):
    outcome = TaskService(db, authority).add_comment(task_id, comment.content, current_user.id)
    return publish_after_response(background_tasks, broadcaster, outcome)


@router.put("/{task_id}/comments/{comment_id}", response_model=schemas.Comment)
def update_comment(
    task_id: str,
    comment_id: str,
    comment: schemas.CommentUpdate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    authority: MembershipAuthority = Depends(get_authority),
    broadcaster: Broadcaster = Depends(get_broadcaster),
    db: Session = Depends(get_db),
):
    """Edit a comment (author only)."""
    outcome = TaskService(db, authority).update_comment(task_id, comment_id, comment.content, current_user.id)
    return publish_after_response(background_tasks, broadcaster, outcome)


@router.delete("/{task_id}/comments/{comment_id}")
def delete_comment(
    task_id: str,
    comment_id: str,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    authority: MembershipAuthority = Depends(get_authority),
    broadcaster: Broadcaster = Depends(get_broadcaster),
    db: Session = Depends(get_db),
):
    """Delete a comment (author, or project OWNER/ADMIN)."""
    outcome = TaskService(db, authority).delete_comment(task_id, comment_id, current_user.id)
    publish_after_response(background_tasks, broadcaster, outcome)
    return {"message": "Comment deleted successfully"}
