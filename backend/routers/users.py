import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

import schemas
from auth.dependencies import get_authority, get_current_user
from auth.permissions import MembershipAuthority
from database import get_db
from errors import ValidationFailed
from models import User
from services.dashboard_service import DashboardService
from services.user_service import UserService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])

MIN_SEARCH_LENGTH = 2


# Fixed paths are declared before /{user_id} so they are not captured by it

@router.get("/search", response_model=List[schemas.UserSummary])
def search_users(
    q: str = "",
    limit: int = Query(10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Find active users by name or email, e.g. to invite them to a project."""
    if len(q.strip()) < MIN_SEARCH_LENGTH:
        raise ValidationFailed(
            "Search query must be at least 2 characters",
            errors=[{"field": "q", "message": "Search query must be at least 2 characters"}],
        )
    return UserService(db).search(q, exclude_user_id=current_user.id, limit=limit)


@router.get("/me/tasks", response_model=schemas.TaskPage)
def get_my_tasks(
    status_filter: Optional[str] = Query(None, alias="status"),
    priority: Optional[str] = None,
    project_id: Optional[str] = Query(None, alias="projectId"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    authority: MembershipAuthority = Depends(get_authority),
    db: Session = Depends(get_db),
):
    """Tasks assigned to the caller, soonest due first."""
    return DashboardService(db, authority).user_tasks(
        current_user.id, status=status_filter, priority=priority, project_id=project_id, page=page, limit=limit
    )


@router.get("/me/dashboard", response_model=schemas.Dashboard)
def get_my_dashboard(
    current_user: User = Depends(get_current_user),
    authority: MembershipAuthority = Depends(get_authority),
    db: Session = Depends(get_db),
):
    logger.debug(f"Building dashboard for user {current_user.id}")
    return DashboardService(db, authority).dashboard(current_user.id)


@router.put("/me/avatar", response_model=schemas.User)
def update_my_avatar(
    request: schemas.AvatarUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return UserService(db).set_avatar(current_user, request.avatar)


@router.post("/me/deactivate")
def deactivate_me(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Deactivate the caller's account. Existing tokens stop working immediately."""
    UserService(db).deactivate(current_user)
    return {"message": "Account deactivated successfully"}


@router.get("/{user_id}", response_model=schemas.UserSummary)
def get_user(
    user_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return UserService(db).get(user_id)
