import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

import schemas
from auth.dependencies import ProjectAccess, get_authority, get_current_user, get_project_access
from auth.permissions import MembershipAuthority
from database import get_db
from models import User
from realtime.broadcaster import Broadcaster, get_broadcaster, publish_after_response
from services.project_service import ProjectService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/projects", tags=["projects"])


# ============== Projects ==============

@router.get("", response_model=schemas.ProjectPage)
def list_projects(
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    authority: MembershipAuthority = Depends(get_authority),
    db: Session = Depends(get_db),
):
    """List projects the current user owns or is a member of, most recently updated first."""
    return ProjectService(db, authority).list_for_user(
        current_user.id, status=status_filter, search=search, page=page, limit=limit
    )


@router.post("", response_model=schemas.Project, status_code=status.HTTP_201_CREATED)
def create_project(
    project: schemas.ProjectCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    authority: MembershipAuthority = Depends(get_authority),
    broadcaster: Broadcaster = Depends(get_broadcaster),
    db: Session = Depends(get_db),
):
    """Create a new project with the caller as owner."""
    outcome = ProjectService(db, authority).create_project(project, current_user.id)
    return publish_after_response(background_tasks, broadcaster, outcome)


@router.get("/{project_id}", response_model=schemas.Project)
def get_project(
    access: ProjectAccess = Depends(get_project_access),
    authority: MembershipAuthority = Depends(get_authority),
    db: Session = Depends(get_db),
):
    return ProjectService(db, authority).get_by_id(access.project_id, access.user.id)


@router.put("/{project_id}", response_model=schemas.Project)
def update_project(
    patch: schemas.ProjectUpdate,
    background_tasks: BackgroundTasks,
    access: ProjectAccess = Depends(get_project_access),
    authority: MembershipAuthority = Depends(get_authority),
    broadcaster: Broadcaster = Depends(get_broadcaster),
    db: Session = Depends(get_db),
):
    """Update a project (requires OWNER or ADMIN role)."""
    outcome = ProjectService(db, authority).update(access.project_id, patch, access.user.id)
    return publish_after_response(background_tasks, broadcaster, outcome)


@router.delete("/{project_id}")
def delete_project(
    background_tasks: BackgroundTasks,
    access: ProjectAccess = Depends(get_project_access),
    authority: MembershipAuthority = Depends(get_authority),
    broadcaster: Broadcaster = Depends(get_broadcaster),
    db: Session = Depends(get_db),
):
    """Delete a project with its tasks, comments and memberships (owner only)."""
    outcome = ProjectService(db, authority).delete(access.project_id, access.user.id)
    publish_after_response(background_tasks, broadcaster, outcome)
    return {"message": "Project deleted successfully"}


# ============== Project Members ==============

@router.get("/{project_id}/members", response_model=List[schemas.Member])
def list_project_members(
    access: ProjectAccess = Depends(get_project_access),
    authority: MembershipAuthority = Depends(get_authority),
    db: Session = Depends(get_db),
):
    return ProjectService(db, authority).list_members(access.project_id, access.user.id)


@router.post("/{project_id}/members", response_model=schemas.Project, status_code=status.HTTP_201_CREATED)
def add_project_member(
    member: schemas.MemberCreate,
    background_tasks: BackgroundTasks,
    access: ProjectAccess = Depends(get_project_access),
    authority: MembershipAuthority = Depends(get_authority),
    broadcaster: Broadcaster = Depends(get_broadcaster),
    db: Session = Depends(get_db),
):
    """Add a registered user to the project by email (requires OWNER or ADMIN role)."""
    outcome = ProjectService(db, authority).add_member(
        access.project_id, member.email, role=member.role, user_id=access.user.id
    )
    return publish_after_response(background_tasks, broadcaster, outcome)


@router.delete("/{project_id}/members/{user_id}")
def remove_project_member(
    user_id: str,
    background_tasks: BackgroundTasks,
    access: ProjectAccess = Depends(get_project_access),
    authority: MembershipAuthority = Depends(get_authority),
    broadcaster: Broadcaster = Depends(get_broadcaster),
    db: Session = Depends(get_db),
):
    """Remove a member from the project. The owner can never be removed."""
    outcome = ProjectService(db, authority).remove_member(access.project_id, user_id, access.user.id)
    publish_after_response(background_tasks, broadcaster, outcome)
    return {"message": "Member removed successfully"}
