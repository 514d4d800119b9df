"""
FastAPI dependencies for the acting principal and project scope.

Authentication itself lives upstream; the gateway forwards the resolved
identity in X-User-* headers.
"""
from typing import Optional

from fastapi import Depends, Header

from app.errors import AuthenticationRequired, ValidationError
from app.models.enums import UserRole
from app.services.authorization import Principal, ensure_project_access


def get_current_principal(
    x_user_id: Optional[str] = Header(None),
    x_user_name: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
    x_user_projects: Optional[str] = Header(None),
) -> Principal:
    """Build the principal from identity headers. 401 when id or role is missing."""
    if not x_user_id or not x_user_role:
        raise AuthenticationRequired("X-User-Id and X-User-Role headers are required")

    try:
        role = UserRole(x_user_role.strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown role '{x_user_role}'", fields=["X-User-Role"])

    project_ids = None
    if x_user_projects is not None:
        project_ids = frozenset(p.strip() for p in x_user_projects.split(",") if p.strip())

    return Principal(
        id=x_user_id.strip(),
        name=(x_user_name or x_user_id).strip(),
        role=role,
        project_ids=project_ids,
    )


def get_project_principal(
    project_id: str,
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    """Principal confirmed to be allowed to act within the path's project."""
    ensure_project_access(principal, project_id)
    return principal
