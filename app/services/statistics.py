"""
Dashboard statistics - a read-only projection over the request store.

Recomputed on every call with grouped counts; nothing is cached.
Zero-count keys are omitted from byStatus/byPriority/byCategory.
"""
from dataclasses import dataclass, field
from typing import Dict, List

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.config import RECENT_REQUESTS_LIMIT
from app.models.domain import ChangeRequest
from app.models.enums import ChangeRequestStatus


@dataclass
class ChangeRequestStats:
    total: int = 0
    pending_approvals: int = 0
    by_status: Dict[str, int] = field(default_factory=dict)
    by_priority: Dict[str, int] = field(default_factory=dict)
    by_category: Dict[str, int] = field(default_factory=dict)
    recent_requests: List[ChangeRequest] = field(default_factory=list)


def _count_by(db: Session, project_id: str, column) -> Dict[str, int]:
    rows = db.query(column, func.count(ChangeRequest.id)).filter(
        ChangeRequest.project_id == project_id
    ).group_by(column).all()
    return {value.value: count for value, count in rows if count}


def compute_stats(db: Session, project_id: str, recent_limit: int = RECENT_REQUESTS_LIMIT) -> ChangeRequestStats:
    """
    Aggregate counts for one project.

    total and pending_approvals are derived from the status breakdown so
    total == sum(by_status.values()) and pending_approvals == by_status["submitted"]
    always hold for a single result.
    """
    by_status = _count_by(db, project_id, ChangeRequest.status)

    recent = db.query(ChangeRequest).filter(
        ChangeRequest.project_id == project_id
    ).order_by(
        ChangeRequest.created_at.desc(),
        ChangeRequest.request_number.desc()
    ).limit(recent_limit).all()

    return ChangeRequestStats(
        total=sum(by_status.values()),
        pending_approvals=by_status.get(ChangeRequestStatus.SUBMITTED.value, 0),
        by_status=by_status,
        by_priority=_count_by(db, project_id, ChangeRequest.priority),
        by_category=_count_by(db, project_id, ChangeRequest.category),
        recent_requests=recent,
    )
