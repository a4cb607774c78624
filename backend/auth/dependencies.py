"""
FastAPI dependencies for authentication and authorization.

This module provides dependency functions that can be used in route handlers to:
- Extract and validate the current user from a JWT bearer token
- Hand out the request-scoped membership authority
- Pre-resolve the caller's role for routes addressing a single project
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from auth.permissions import MembershipAuthority
from auth.security import verify_token
from database import get_db
from errors import AccountDeactivated, Unauthorized
from models import ProjectRole, User

logger = logging.getLogger(__name__)

# HTTP Bearer token scheme for JWT authentication
security = HTTPBearer(auto_error=False)


def resolve_user(token: Optional[str], db: Session) -> User:
    """
    Turn a bearer token into an active user.

    Shared by the HTTP dependencies and the WebSocket handshake.

    Raises:
        Unauthorized: token missing, malformed, expired, of the wrong type,
            or naming a user that no longer exists
        AccountDeactivated: the user exists but has been deactivated
    """
    if not token:
        logger.info("No authentication credentials provided")
        raise Unauthorized("Access denied. No token provided.")

    payload = verify_token(token)
    if payload is None:
        raise Unauthorized("Invalid or expired token")

    token_type = payload.get("type")
    if token_type != "access":
        logger.info(f"Invalid token type: {token_type}")
        raise Unauthorized("Invalid token type")

    user_id = payload.get("sub")
    if not user_id:
        logger.info("Token payload missing 'sub' claim")
        raise Unauthorized("Invalid token payload")

    user = db.query(User).filter(User.id == str(user_id)).first()
    if user is None:
        logger.info(f"User not found for id: {user_id}")
        raise Unauthorized("Invalid token. User not found.")

    if not user.is_active:
        logger.info(f"Inactive user attempted access: {user_id}")
        raise AccountDeactivated()

    logger.debug(f"User authenticated via JWT: {user.email}")
    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """
    Extract and validate the current user from the Authorization header.

    Example:
        @router.get("/api/protected")
        async def protected_route(user: User = Depends(get_current_user)):
            return {"user_id": user.id}
    """
    token = credentials.credentials if credentials else None
    return resolve_user(token, db)


def get_authority(db: Session = Depends(get_db)) -> MembershipAuthority:
    """One MembershipAuthority per request; FastAPI caches it across dependencies."""
    return MembershipAuthority(db)


@dataclass
class ProjectAccess:
    project_id: str
    user: User
    # None when the caller has no membership row for the project
    role: Optional[ProjectRole]


async def get_project_access(
    project_id: str,
    current_user: User = Depends(get_current_user),
    authority: MembershipAuthority = Depends(get_authority),
) -> ProjectAccess:
    """
    Resolve the caller's role in the project named by the path.

    Nothing is enforced here: the service decides whether a missing role
    means 404 or 403. The lookup lands in the authority's memo, which the
    service reuses.
    """
    role = authority.role_of(project_id, current_user.id)
    return ProjectAccess(project_id=project_id, user=current_user, role=role)
