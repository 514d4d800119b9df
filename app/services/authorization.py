"""
Acting principal and the authorization rules for workflow actions.

Every check here is a pure function of the principal and the request;
nothing reads ambient session state.
"""
from dataclasses import dataclass
from typing import FrozenSet, Optional

from app.errors import Forbidden
from app.models.domain import ChangeRequest
from app.models.enums import UserRole, WorkflowAction


APPROVER_ROLES = frozenset({UserRole.ADMIN, UserRole.HOSPITAL_LEADERSHIP})
IMPLEMENTER_ROLES = frozenset({UserRole.ADMIN, UserRole.HOSPITAL_LEADERSHIP, UserRole.HOSPITAL_STAFF})

# Actions restricted to the requester (admins bypass ownership)
OWNER_ACTIONS = frozenset({WorkflowAction.EDIT, WorkflowAction.SUBMIT, WorkflowAction.DELETE})


@dataclass(frozen=True)
class Principal:
    """The acting user as supplied by the identity resolver."""
    id: str
    name: str
    role: UserRole
    # None means no project restriction
    project_ids: Optional[FrozenSet[str]] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def can_access_project(principal: Principal, project_id: str) -> bool:
    if principal.is_admin or principal.project_ids is None:
        return True
    return project_id in principal.project_ids


def ensure_project_access(principal: Principal, project_id: str) -> None:
    if not can_access_project(principal, project_id):
        raise Forbidden(
            f"User {principal.id} may not act within project {project_id}",
            details={"project_id": project_id},
        )


def is_owner(principal: Principal, change_request: ChangeRequest) -> bool:
    return change_request.requested_by_id == principal.id


def authorize(principal: Principal, action: WorkflowAction, change_request: ChangeRequest) -> None:
    """
    Raise Forbidden unless the principal may perform the action on the request.

    - edit/submit/delete: the requester, or an admin
    - approve/reject: approver roles
    - implement: implementer roles
    """
    ensure_project_access(principal, change_request.project_id)

    if action in OWNER_ACTIONS:
        if principal.is_admin or is_owner(principal, change_request):
            return
        raise Forbidden(
            f"Only the requester or an admin may {action.value} this change request",
            details={"action": action.value, "role": principal.role.value},
        )

    if action in (WorkflowAction.APPROVE, WorkflowAction.REJECT):
        allowed = APPROVER_ROLES
    elif action == WorkflowAction.IMPLEMENT:
        allowed = IMPLEMENTER_ROLES
    else:
        return

    if principal.role not in allowed:
        raise Forbidden(
            f"Role '{principal.role.value}' may not {action.value} change requests",
            details={
                "action": action.value,
                "role": principal.role.value,
                "allowed_roles": sorted(role.value for role in allowed),
            },
        )
