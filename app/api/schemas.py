"""Pydantic schemas for request/response validation. JSON uses camelCase field names."""
from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.models.enums import (
    ApprovalDecision,
    ChangeRequestCategory,
    ChangeRequestPriority,
    ChangeRequestStatus,
    ImpactArea,
    ImpactLevel,
    ImpactSeverity,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ChangeRequest schemas
class ChangeRequestCreate(CamelModel):
    title: str
    description: str
    category: Optional[ChangeRequestCategory] = None
    priority: Optional[ChangeRequestPriority] = None
    impact_level: Optional[ImpactLevel] = None
    justification: Optional[str] = None
    proposed_solution: Optional[str] = None
    estimated_effort: Optional[str] = None
    estimated_cost: Optional[str] = None
    target_implementation_date: Optional[date] = None


class ChangeRequestUpdate(CamelModel):
    """Only fields present in the body are changed."""
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[ChangeRequestCategory] = None
    priority: Optional[ChangeRequestPriority] = None
    impact_level: Optional[ImpactLevel] = None
    justification: Optional[str] = None
    proposed_solution: Optional[str] = None
    estimated_effort: Optional[str] = None
    estimated_cost: Optional[str] = None
    target_implementation_date: Optional[date] = None


class ChangeRequestResponse(CamelModel):
    id: str
    project_id: str
    request_number: str
    title: str
    description: str
    category: ChangeRequestCategory
    priority: ChangeRequestPriority
    impact_level: ImpactLevel
    justification: Optional[str] = None
    proposed_solution: Optional[str] = None
    estimated_effort: Optional[str] = None
    estimated_cost: Optional[str] = None
    target_implementation_date: Optional[date] = None
    requested_by_id: str
    requested_by_name: Optional[str] = None
    status: ChangeRequestStatus
    created_at: datetime
    updated_at: datetime
    submitted_at: Optional[datetime] = None
    decided_at: Optional[datetime] = None
    implemented_at: Optional[datetime] = None
    actual_implementation_date: Optional[date] = None


# Impact schemas
class ImpactCreate(CamelModel):
    impact_area: ImpactArea
    description: Optional[str] = None
    severity: ImpactSeverity = ImpactSeverity.MEDIUM


class ImpactResponse(CamelModel):
    id: str
    change_request_id: str
    impact_area: ImpactArea
    description: Optional[str] = None
    severity: ImpactSeverity
    created_at: datetime


# Approval schemas
class DecisionRequest(CamelModel):
    comments: Optional[str] = Field(None, max_length=4000)


class ApprovalResponse(CamelModel):
    id: str
    change_request_id: str
    approver_id: str
    approver_name: Optional[str] = None
    approver_role: str
    decision: ApprovalDecision
    comments: Optional[str] = None
    decided_at: datetime
    created_at: datetime


class DecisionResponse(CamelModel):
    """Result of approve/reject: the updated request and the ledger entry."""
    request: ChangeRequestResponse
    approval: ApprovalResponse


# Comment schemas
class CommentCreate(CamelModel):
    content: str = Field(..., max_length=4000)


class CommentResponse(CamelModel):
    id: str
    change_request_id: str
    author_id: str
    author_name: Optional[str] = None
    content: str
    created_at: datetime


class ChangeRequestDetail(ChangeRequestResponse):
    impacts: List[ImpactResponse] = []
    approvals: List[ApprovalResponse] = []
    comments: List[CommentResponse] = []


class ChangeRequestStatsResponse(CamelModel):
    total: int
    pending_approvals: int
    by_status: Dict[str, int]
    by_priority: Dict[str, int]
    by_category: Dict[str, int]
    recent_requests: List[ChangeRequestResponse]


# Error response
class ErrorBody(BaseModel):
    code: str
    message: str
    details: Dict = {}


class ErrorResponse(BaseModel):
    """Envelope used for every refused or failed call."""
    error: ErrorBody
