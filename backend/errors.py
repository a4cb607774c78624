"""
Domain error taxonomy.

Services raise these typed failures; the HTTP boundary (``main.py``) turns
them into JSON responses of the form ``{"detail": ..., "code": ...}``. The
``code`` is the error kind, stable for clients; ``detail`` is human readable.
"""

from typing import Any, Dict, List, Optional

from fastapi import status


class DomainError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "Internal"
    default_detail: str = "Internal server error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.detail, "code": self.code}


# ============== Authentication ==============

class Unauthorized(DomainError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "Unauthorized"
    default_detail = "Not authenticated"


class AccountDeactivated(DomainError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "AccountDeactivated"
    default_detail = "Account is deactivated"


class InvalidCredentials(DomainError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "InvalidCredentials"
    default_detail = "Invalid email or password"


# ============== Access ==============

class AccessDenied(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "AccessDenied"
    default_detail = "Access denied - not a project member"


class NotFoundOrDenied(DomainError):
    # Absent and inaccessible look the same so existence does not leak
    status_code = status.HTTP_404_NOT_FOUND
    code = "NotFoundOrDenied"
    default_detail = "Project not found or access denied"


class NotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NotFound"
    default_detail = "Not found"


class InsufficientPermissions(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "InsufficientPermissions"
    default_detail = "Insufficient permissions"


# ============== Domain rules ==============

class InvalidAssignee(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "InvalidAssignee"
    default_detail = "Assignee must be a project member"


class AlreadyMember(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "AlreadyMember"
    default_detail = "User is already a member of this project"


class CannotRemoveOwner(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "CannotRemoveOwner"
    default_detail = "Cannot remove project owner"


class UserNotFound(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "UserNotFound"
    default_detail = "User not found"


class EmailAlreadyRegistered(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "EmailAlreadyRegistered"
    default_detail = "Email already registered"


class ValidationFailed(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "ValidationFailed"
    default_detail = "Validation failed"

    def __init__(self, detail: Optional[str] = None, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(detail)
        self.errors = errors or []

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["errors"] = self.errors
        return body


class Internal(DomainError):
    pass
