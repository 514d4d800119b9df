"""API routes for the change request workflow."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from app.config import LIST_PAGE_LIMIT
from app.database import get_db
from app.models.enums import (
    ChangeRequestCategory,
    ChangeRequestPriority,
    ChangeRequestStatus,
)
from app.services.authorization import Principal, ensure_project_access
from app.services.statistics import compute_stats
from app.services.workflow import WorkflowEngine
from app.api.deps import get_current_principal, get_project_principal
from app.api.schemas import (
    ApprovalResponse,
    ChangeRequestCreate,
    ChangeRequestDetail,
    ChangeRequestResponse,
    ChangeRequestStatsResponse,
    ChangeRequestUpdate,
    CommentCreate,
    CommentResponse,
    DecisionRequest,
    DecisionResponse,
    ErrorResponse,
    ImpactCreate,
    ImpactResponse,
)

router = APIRouter()

REFUSALS = {
    403: {"model": ErrorResponse, "description": "Principal lacks the role or ownership required"},
    404: {"model": ErrorResponse, "description": "Change request not found"},
    409: {"model": ErrorResponse, "description": "Action not allowed from the current status"},
}


# Project-scoped change request endpoints
@router.get("/projects/{project_id}/change-requests", response_model=List[ChangeRequestResponse])
def list_change_requests(
    project_id: str,
    response: Response,
    status_filter: Optional[ChangeRequestStatus] = Query(None, alias="status"),
    category: Optional[ChangeRequestCategory] = None,
    priority: Optional[ChangeRequestPriority] = None,
    search: Optional[str] = None,
    offset: int = Query(0, ge=0),
    limit: int = Query(LIST_PAGE_LIMIT, ge=1, le=500),
    principal: Principal = Depends(get_project_principal),
    db: Session = Depends(get_db)
):
    """
    List change requests for a project, newest first.

    Filters combine with AND. Clients restart from offset 0 whenever they
    change a filter; the total matching count is returned in X-Total-Count.
    """
    engine = WorkflowEngine(db)
    filters = dict(status=status_filter, category=category, priority=priority, search=search)
    response.headers["X-Total-Count"] = str(engine.store.count(project_id, **filters))
    return engine.store.list(project_id, offset=offset, limit=limit, **filters)


@router.get("/projects/{project_id}/change-requests/stats", response_model=ChangeRequestStatsResponse)
def get_change_request_stats(
    project_id: str,
    principal: Principal = Depends(get_project_principal),
    db: Session = Depends(get_db)
):
    """Dashboard counts by status, priority and category plus the five newest requests."""
    stats = compute_stats(db, project_id)
    return ChangeRequestStatsResponse(
        total=stats.total,
        pending_approvals=stats.pending_approvals,
        by_status=stats.by_status,
        by_priority=stats.by_priority,
        by_category=stats.by_category,
        recent_requests=[ChangeRequestResponse.model_validate(cr) for cr in stats.recent_requests],
    )


@router.get(
    "/projects/{project_id}/change-requests/{change_request_id}",
    response_model=ChangeRequestDetail,
    responses=REFUSALS,
)
def get_change_request(
    project_id: str,
    change_request_id: str,
    principal: Principal = Depends(get_project_principal),
    db: Session = Depends(get_db)
):
    """A single change request with its impacts, approvals (newest first) and comments (oldest first)."""
    engine = WorkflowEngine(db)
    change_request = engine.get(change_request_id, project_id=project_id)
    detail = ChangeRequestResponse.model_validate(change_request).model_dump()
    return ChangeRequestDetail(
        **detail,
        impacts=[ImpactResponse.model_validate(i) for i in engine.impacts.list_impacts(change_request.id)],
        approvals=[ApprovalResponse.model_validate(a) for a in engine.ledger.list_decisions(change_request.id)],
        comments=[CommentResponse.model_validate(c) for c in engine.comments.list_comments(change_request.id)],
    )


@router.post(
    "/projects/{project_id}/change-requests",
    response_model=ChangeRequestResponse,
    status_code=status.HTTP_201_CREATED,
    responses=REFUSALS,
)
def create_change_request(
    project_id: str,
    request_data: ChangeRequestCreate,
    principal: Principal = Depends(get_project_principal),
    db: Session = Depends(get_db)
):
    """Create a new change request in draft. The request number is assigned here."""
    engine = WorkflowEngine(db)
    return engine.create(project_id, principal, request_data.model_dump())


@router.patch(
    "/projects/{project_id}/change-requests/{change_request_id}",
    response_model=ChangeRequestResponse,
    responses=REFUSALS,
)
def update_change_request(
    project_id: str,
    change_request_id: str,
    changes: ChangeRequestUpdate,
    principal: Principal = Depends(get_project_principal),
    db: Session = Depends(get_db)
):
    """Edit content fields. Only drafts can be edited."""
    engine = WorkflowEngine(db)
    engine.get(change_request_id, project_id=project_id)
    return engine.edit(change_request_id, principal, changes.model_dump(exclude_unset=True))


@router.delete(
    "/projects/{project_id}/change-requests/{change_request_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=REFUSALS,
)
def delete_change_request(
    project_id: str,
    change_request_id: str,
    principal: Principal = Depends(get_project_principal),
    db: Session = Depends(get_db)
):
    """Delete a draft together with its impacts and comments."""
    engine = WorkflowEngine(db)
    engine.get(change_request_id, project_id=project_id)
    engine.delete(change_request_id, principal)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Workflow actions
@router.post("/change-requests/{change_request_id}/submit", response_model=ChangeRequestResponse, responses=REFUSALS)
def submit_change_request(
    change_request_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """draft → submitted. Requester only."""
    return WorkflowEngine(db).submit(change_request_id, principal)


@router.post("/change-requests/{change_request_id}/approve", response_model=DecisionResponse, responses=REFUSALS)
def approve_change_request(
    change_request_id: str,
    decision: Optional[DecisionRequest] = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """submitted → approved. Comments are optional."""
    comments = decision.comments if decision else None
    change_request, approval = WorkflowEngine(db).approve(change_request_id, principal, comments)
    return DecisionResponse(
        request=ChangeRequestResponse.model_validate(change_request),
        approval=ApprovalResponse.model_validate(approval),
    )


@router.post("/change-requests/{change_request_id}/reject", response_model=DecisionResponse, responses=REFUSALS)
def reject_change_request(
    change_request_id: str,
    decision: Optional[DecisionRequest] = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """submitted → rejected. Comments are required."""
    comments = decision.comments if decision else None
    change_request, approval = WorkflowEngine(db).reject(change_request_id, principal, comments)
    return DecisionResponse(
        request=ChangeRequestResponse.model_validate(change_request),
        approval=ApprovalResponse.model_validate(approval),
    )


@router.post("/change-requests/{change_request_id}/implement", response_model=ChangeRequestResponse, responses=REFUSALS)
def implement_change_request(
    change_request_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """approved → implemented."""
    return WorkflowEngine(db).implement(change_request_id, principal)


# Comments and impacts
@router.post(
    "/change-requests/{change_request_id}/comments",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
    responses=REFUSALS,
)
def add_comment(
    change_request_id: str,
    comment_data: CommentCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    return WorkflowEngine(db).add_comment(change_request_id, principal, comment_data.content)


@router.get("/change-requests/{change_request_id}/comments", response_model=List[CommentResponse], responses=REFUSALS)
def list_comments(
    change_request_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Comments oldest first."""
    engine = WorkflowEngine(db)
    change_request = engine.get(change_request_id)
    ensure_project_access(principal, change_request.project_id)
    return engine.comments.list_comments(change_request.id)


@router.post(
    "/change-requests/{change_request_id}/impacts",
    response_model=ImpactResponse,
    status_code=status.HTTP_201_CREATED,
    responses=REFUSALS,
)
def add_impact(
    change_request_id: str,
    impact_data: ImpactCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    return WorkflowEngine(db).add_impact(
        change_request_id,
        principal,
        impact_area=impact_data.impact_area,
        description=impact_data.description,
        severity=impact_data.severity,
    )
