"""
Approval ledger - the append-only record of approve/reject decisions.

Only the WorkflowEngine calls record_decision. There is no
update or delete operation on this class.
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.errors import AlreadyDecided, ValidationError
from app.models.domain import Approval, ChangeRequest
from app.models.enums import ApprovalDecision, ChangeRequestStatus
from app.services.authorization import Principal
from app.services.request_store import RequestStore


DECISION_STATUS = {
    ApprovalDecision.APPROVED: ChangeRequestStatus.APPROVED,
    ApprovalDecision.REJECTED: ChangeRequestStatus.REJECTED,
}


class ApprovalLedger:
    """Writes exactly one Approval row per decided change request."""

    def __init__(self, db: Session, store: Optional[RequestStore] = None):
        self.db = db
        self.store = store or RequestStore(db)

    def record_decision(
        self,
        change_request_id: str,
        approver: Principal,
        decision: ApprovalDecision,
        comments: Optional[str],
        decided_at: datetime
    ) -> Approval:
        """
        Move the request out of submitted and append the matching Approval row.

        Both writes happen in the caller's transaction. Raises AlreadyDecided
        if the request is no longer submitted or already has a decision.
        """
        comments = comments.strip() if comments else None
        if decision == ApprovalDecision.REJECTED and not comments:
            raise ValidationError("Comments are required when rejecting a change request", fields=["comments"])

        moved = self.store.compare_and_set_status(
            change_request_id,
            expected=ChangeRequestStatus.SUBMITTED,
            new_status=DECISION_STATUS[decision],
            decided_at=decided_at,
            updated_at=decided_at,
        )
        if not moved:
            raise AlreadyDecided(change_request_id, self._current_status(change_request_id))

        approval = Approval(
            change_request_id=change_request_id,
            approver_id=approver.id,
            approver_name=approver.name,
            approver_role=approver.role.value,
            decision=decision,
            comments=comments,
            decided_at=decided_at,
            created_at=decided_at,
        )
        self.db.add(approval)
        try:
            self.db.flush()
        except IntegrityError:
            # Unique change_request_id: another decision was recorded first
            raise AlreadyDecided(change_request_id)
        return approval

    def list_decisions(self, change_request_id: str) -> List[Approval]:
        """Decisions for a request, newest first."""
        return self.db.query(Approval).filter(
            Approval.change_request_id == change_request_id
        ).order_by(Approval.created_at.desc()).all()

    def _current_status(self, change_request_id: str) -> Optional[str]:
        status = self.db.query(ChangeRequest.status).filter(
            ChangeRequest.id == change_request_id
        ).scalar()
        return status.value if status is not None else None
