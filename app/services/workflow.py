"""
Workflow engine that enforces the change request lifecycle.

This is the transition authority - every status change MUST go through here.

    draft → submitted → approved → implemented
                      ↘ rejected

Guards run in a fixed order before anything is written:
existence → authorization → current status → field validation.
Each transition is a compare-and-swap on the stored status, so a writer
that loses a race is refused instead of overwriting the winner.
"""
from contextlib import contextmanager
from typing import Any, Dict, FrozenSet, Iterator, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.database import WRITE_TRANSACTION
from app.errors import (
    AlreadyDecided,
    DomainError,
    Forbidden,
    InvalidTransition,
    NotFound,
    StorageFailure,
    ValidationError,
)
from app.models.audit import AuditEvent, AuditEventType
from app.models.domain import Approval, ChangeRequest, Comment, Impact
from app.models.enums import (
    ApprovalDecision,
    ChangeRequestCategory,
    ChangeRequestPriority,
    ChangeRequestStatus,
    ImpactArea,
    ImpactLevel,
    ImpactSeverity,
    WorkflowAction,
)
from app.services.approval_ledger import ApprovalLedger
from app.services.authorization import Principal, authorize, ensure_project_access
from app.services.comment_thread import CommentThread
from app.services.impact_register import ImpactRegister
from app.services.request_store import MUTABLE_FIELDS, RequestStore
from app.utils.logger import get_logger
from app.utils.time import not_before, utc_now

logger = get_logger(__name__)

MAX_NUMBER_ATTEMPTS = 5

# Which actions each status permits. Every status must appear here.
ALLOWED_ACTIONS: Dict[ChangeRequestStatus, FrozenSet[WorkflowAction]] = {
    ChangeRequestStatus.DRAFT: frozenset({WorkflowAction.EDIT, WorkflowAction.SUBMIT, WorkflowAction.DELETE}),
    ChangeRequestStatus.SUBMITTED: frozenset({WorkflowAction.APPROVE, WorkflowAction.REJECT}),
    ChangeRequestStatus.APPROVED: frozenset({WorkflowAction.IMPLEMENT}),
    ChangeRequestStatus.REJECTED: frozenset(),
    ChangeRequestStatus.IMPLEMENTED: frozenset(),
}

# Status changes performed by the transitioning actions
TRANSITIONS: Dict[WorkflowAction, Tuple[ChangeRequestStatus, ChangeRequestStatus]] = {
    WorkflowAction.SUBMIT: (ChangeRequestStatus.DRAFT, ChangeRequestStatus.SUBMITTED),
    WorkflowAction.APPROVE: (ChangeRequestStatus.SUBMITTED, ChangeRequestStatus.APPROVED),
    WorkflowAction.REJECT: (ChangeRequestStatus.SUBMITTED, ChangeRequestStatus.REJECTED),
    WorkflowAction.IMPLEMENT: (ChangeRequestStatus.APPROVED, ChangeRequestStatus.IMPLEMENTED),
}

REQUIRED_FIELDS = ("title", "description")

ENUM_FIELDS = {
    "category": ChangeRequestCategory,
    "priority": ChangeRequestPriority,
    "impact_level": ImpactLevel,
}


def is_allowed(status: ChangeRequestStatus, action: WorkflowAction) -> bool:
    return action in ALLOWED_ACTIONS[status]


class WorkflowEngine:
    """Validates and executes change request transitions."""

    def __init__(self, db: Session):
        self.db = db
        self.store = RequestStore(db)
        self.ledger = ApprovalLedger(db, self.store)
        self.comments = CommentThread(db)
        self.impacts = ImpactRegister(db)

    # Reads

    def get(self, change_request_id: str, project_id: Optional[str] = None) -> ChangeRequest:
        change_request = self.store.get(change_request_id, project_id=project_id)
        if change_request is None:
            raise NotFound(
                f"Change request {change_request_id} not found",
                details={"change_request_id": change_request_id},
            )
        return change_request

    # Authoring

    def create(self, project_id: str, actor: Principal, data: Dict[str, Any]) -> ChangeRequest:
        """
        Create a change request in draft and allocate its request number.

        Number allocation retries when a concurrent creator claimed the
        same counter row or number first.
        """
        try:
            ensure_project_access(actor, project_id)
            content = self._clean_content(data, partial=False)
        except (Forbidden, ValidationError) as exc:
            self._refuse(
                exc,
                None,
                WorkflowAction.CREATE,
                actor,
                entity_type="Project",
                entity_id=project_id,
                project_id=project_id,
            )

        for attempt in range(1, MAX_NUMBER_ATTEMPTS + 1):
            try:
                with self._unit_of_work(retry_on_conflict=True):
                    now = utc_now()
                    request_number = self.store.allocate_request_number(project_id, now.year)
                    change_request = self.store.add(ChangeRequest(
                        project_id=project_id,
                        request_number=request_number,
                        requested_by_id=actor.id,
                        requested_by_name=actor.name,
                        status=ChangeRequestStatus.DRAFT,
                        created_at=now,
                        updated_at=now,
                        **content
                    ))
                    self._audit(
                        AuditEventType.CHANGE_REQUEST_CREATED,
                        change_request.id,
                        actor,
                        project_id=project_id,
                        request_number=request_number,
                    )
            except IntegrityError:
                logger.warning(
                    "Request number collision, retrying",
                    extra={"project_id": project_id, "action": WorkflowAction.CREATE.value},
                )
                if attempt == MAX_NUMBER_ATTEMPTS:
                    raise StorageFailure("Could not allocate a unique request number")
                continue
            break

        self.db.refresh(change_request)
        self._log_transition(change_request, WorkflowAction.CREATE, actor)
        return change_request

    def edit(self, change_request_id: str, actor: Principal, changes: Dict[str, Any]) -> ChangeRequest:
        """Change content fields of a draft. Provenance, status and timestamps are not editable."""
        change_request = self.get(change_request_id)
        self._guard(change_request, WorkflowAction.EDIT, actor)
        try:
            content = self._clean_content(changes, partial=True)
        except ValidationError as exc:
            self._refuse(exc, change_request_id, WorkflowAction.EDIT, actor)
        if not content:
            return change_request

        content["updated_at"] = not_before(change_request.updated_at)
        fields = sorted(key for key in content if key != "updated_at")
        try:
            with self._unit_of_work():
                if not self.store.update_fields_if_status(change_request_id, ChangeRequestStatus.DRAFT, content):
                    self._lost_race(change_request_id, WorkflowAction.EDIT)
                self._audit(AuditEventType.CHANGE_REQUEST_UPDATED, change_request_id, actor, fields=fields)
        except InvalidTransition as exc:
            self._refuse(exc, change_request_id, WorkflowAction.EDIT, actor)

        self.db.refresh(change_request)
        return change_request

    # Transitions

    def submit(self, change_request_id: str, actor: Principal) -> ChangeRequest:
        change_request = self.get(change_request_id)
        self._guard(change_request, WorkflowAction.SUBMIT, actor)

        now = not_before(change_request.created_at, change_request.updated_at)
        return self._transition(
            change_request,
            WorkflowAction.SUBMIT,
            actor,
            AuditEventType.CHANGE_REQUEST_SUBMITTED,
            submitted_at=now,
            updated_at=now,
        )

    def approve(
        self,
        change_request_id: str,
        actor: Principal,
        comments: Optional[str] = None
    ) -> Tuple[ChangeRequest, Approval]:
        return self._decide(change_request_id, actor, ApprovalDecision.APPROVED, comments)

    def reject(
        self,
        change_request_id: str,
        actor: Principal,
        comments: Optional[str]
    ) -> Tuple[ChangeRequest, Approval]:
        """Reject a submitted request. Comments explaining the rejection are required."""
        return self._decide(change_request_id, actor, ApprovalDecision.REJECTED, comments)

    def implement(self, change_request_id: str, actor: Principal) -> ChangeRequest:
        change_request = self.get(change_request_id)
        self._guard(change_request, WorkflowAction.IMPLEMENT, actor)

        now = not_before(
            change_request.created_at,
            change_request.updated_at,
            change_request.submitted_at,
            change_request.decided_at,
        )
        return self._transition(
            change_request,
            WorkflowAction.IMPLEMENT,
            actor,
            AuditEventType.CHANGE_REQUEST_IMPLEMENTED,
            implemented_at=now,
            actual_implementation_date=now.date(),
            updated_at=now,
        )

    def delete(self, change_request_id: str, actor: Principal) -> None:
        """Permanently delete a draft together with its impacts and comments."""
        change_request = self.get(change_request_id)
        self._guard(change_request, WorkflowAction.DELETE, actor)
        request_number = change_request.request_number

        try:
            with self._unit_of_work():
                if not self.store.delete_if_status(change_request_id, ChangeRequestStatus.DRAFT):
                    self._lost_race(change_request_id, WorkflowAction.DELETE)
                self._audit(
                    AuditEventType.CHANGE_REQUEST_DELETED,
                    change_request_id,
                    actor,
                    request_number=request_number,
                )
        except InvalidTransition as exc:
            self._refuse(exc, change_request_id, WorkflowAction.DELETE, actor)

        self.db.expunge(change_request)
        logger.info(
            f"Change request {request_number} deleted",
            extra={
                "change_request_id": change_request_id,
                "action": WorkflowAction.DELETE.value,
                "user_id": actor.id,
            },
        )

    # Side records

    def add_comment(self, change_request_id: str, actor: Principal, content: str) -> Comment:
        change_request = self.get(change_request_id)
        try:
            ensure_project_access(actor, change_request.project_id)
            with self._unit_of_work():
                comment = self.comments.add_comment(change_request_id, actor.id, actor.name, content)
                self._audit(AuditEventType.COMMENT_ADDED, change_request_id, actor, comment_id=comment.id)
        except (Forbidden, ValidationError) as exc:
            self._refuse(exc, change_request_id, WorkflowAction.ADD_COMMENT, actor)

        self.db.refresh(comment)
        return comment

    def add_impact(
        self,
        change_request_id: str,
        actor: Principal,
        impact_area: ImpactArea,
        description: Optional[str] = None,
        severity: ImpactSeverity = ImpactSeverity.MEDIUM
    ) -> Impact:
        change_request = self.get(change_request_id)
        try:
            ensure_project_access(actor, change_request.project_id)
        except Forbidden as exc:
            self._refuse(exc, change_request_id, WorkflowAction.ADD_IMPACT, actor)

        with self._unit_of_work():
            impact = self.impacts.add_impact(change_request_id, impact_area, description, severity)
            self._audit(
                AuditEventType.IMPACT_ADDED,
                change_request_id,
                actor,
                impact_id=impact.id,
                impact_area=impact.impact_area.value,
                severity=impact.severity.value,
            )

        self.db.refresh(impact)
        return impact

    # Internals

    def _transition(
        self,
        change_request: ChangeRequest,
        action: WorkflowAction,
        actor: Principal,
        event_type: str,
        **values: Any
    ) -> ChangeRequest:
        """Compare-and-swap the status for a non-deciding transition and audit it."""
        change_request_id = change_request.id
        expected, new_status = TRANSITIONS[action]
        try:
            with self._unit_of_work():
                if not self.store.compare_and_set_status(change_request_id, expected, new_status, **values):
                    self._lost_race(change_request_id, action)
                self._audit(event_type, change_request_id, actor)
        except InvalidTransition as exc:
            self._refuse(exc, change_request_id, action, actor)

        self.db.refresh(change_request)
        self._log_transition(change_request, action, actor)
        return change_request

    def _decide(
        self,
        change_request_id: str,
        actor: Principal,
        decision: ApprovalDecision,
        comments: Optional[str]
    ) -> Tuple[ChangeRequest, Approval]:
        action = WorkflowAction.APPROVE if decision == ApprovalDecision.APPROVED else WorkflowAction.REJECT
        change_request = self.get(change_request_id)
        self._guard(change_request, action, actor)

        if decision == ApprovalDecision.REJECTED and not (comments or "").strip():
            self._refuse(
                ValidationError("Comments are required when rejecting a change request", fields=["comments"]),
                change_request_id,
                action,
                actor,
            )

        now = not_before(
            change_request.created_at,
            change_request.updated_at,
            change_request.submitted_at,
        )
        try:
            with self._unit_of_work():
                approval = self.ledger.record_decision(change_request_id, actor, decision, comments, now)
                self._audit(
                    AuditEventType.CHANGE_REQUEST_APPROVED
                    if decision == ApprovalDecision.APPROVED
                    else AuditEventType.CHANGE_REQUEST_REJECTED,
                    change_request_id,
                    actor,
                    entity_type="Approval",
                    entity_id=approval.id,
                    decision=decision.value,
                    approver_role=actor.role.value,
                )
        except AlreadyDecided as exc:
            self._refuse(exc, change_request_id, action, actor)

        self.db.refresh(change_request)
        self.db.refresh(approval)
        self._log_transition(change_request, action, actor)
        return change_request, approval

    def _guard(self, change_request: ChangeRequest, action: WorkflowAction, actor: Principal) -> None:
        """Authorization first, then the status precondition. Refusals are audited."""
        try:
            authorize(actor, action, change_request)
            if not is_allowed(change_request.status, action):
                raise InvalidTransition(action.value, change_request.status.value)
        except DomainError as exc:
            self._refuse(exc, change_request.id, action, actor)

    def _lost_race(self, change_request_id: str, action: WorkflowAction) -> None:
        """Another writer changed the status between our read and our write."""
        current_status = self.db.query(ChangeRequest.status).filter(
            ChangeRequest.id == change_request_id
        ).scalar()
        raise InvalidTransition(action.value, current_status.value if current_status is not None else "deleted")

    def _refuse(
        self,
        error: DomainError,
        change_request_id: Optional[str],
        action: WorkflowAction,
        actor: Principal,
        entity_type: str = "ChangeRequest",
        entity_id: Optional[str] = None,
        project_id: Optional[str] = None
    ) -> None:
        """Record the refused attempt in its own transaction, then raise."""
        self.db.rollback()
        try:
            self._begin_write()
            self._audit(
                AuditEventType.ACTION_REFUSED,
                change_request_id,
                actor,
                entity_type=entity_type,
                entity_id=entity_id,
                action=action.value,
                error_code=error.error_code,
                reason=error.message,
                attempted_by_user_id=actor.id,
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error("Failed to audit refused action", exc_info=True)

        logger.warning(
            f"Refused {action.value}: {error.message}",
            extra={
                "change_request_id": change_request_id,
                "project_id": project_id,
                "action": action.value,
                "user_id": actor.id,
                "error_code": error.error_code,
            },
        )
        raise error

    def _begin_write(self) -> None:
        """End any read transaction and start one that holds the write lock."""
        if self.db.in_transaction():
            self.db.commit()
        self.db.connection(execution_options=WRITE_TRANSACTION)

    def _audit(
        self,
        event_type: str,
        change_request_id: Optional[str],
        actor: Principal,
        entity_type: str = "ChangeRequest",
        entity_id: Optional[str] = None,
        **payload: Any
    ) -> None:
        payload["change_request_id"] = change_request_id
        self.db.add(AuditEvent(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=str(entity_id or change_request_id),
            user_id=actor.id,
            payload_json=payload,
        ))

    @contextmanager
    def _unit_of_work(self, retry_on_conflict: bool = False) -> Iterator[None]:
        """
        Commit on success; roll back on any failure so nothing is partially applied.

        With retry_on_conflict, IntegrityError is re-raised for the caller to retry.
        """
        try:
            self._begin_write()
            yield
            self.db.commit()
        except DomainError:
            self.db.rollback()
            raise
        except IntegrityError as exc:
            self.db.rollback()
            if retry_on_conflict:
                raise
            logger.error("Integrity violation during workflow action", exc_info=True)
            raise StorageFailure("The change was rejected by the store; nothing was changed") from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Storage failure during workflow action", exc_info=True)
            raise StorageFailure("The change request store is unavailable; nothing was changed") from exc

    def _clean_content(self, data: Dict[str, Any], partial: bool) -> Dict[str, Any]:
        """Keep known content fields, coerce enums, and check required text fields."""
        content = {key: value for key, value in data.items() if key in MUTABLE_FIELDS}
        invalid = []

        for field in REQUIRED_FIELDS:
            if field not in content and partial:
                continue
            value = content.get(field)
            if not isinstance(value, str) or not value.strip():
                invalid.append(field)
            else:
                content[field] = value.strip()

        for field, enum_cls in ENUM_FIELDS.items():
            if field not in content:
                continue
            if content[field] is None:
                # Fall back to column defaults on create; keep the stored value on edit
                content.pop(field)
                continue
            try:
                content[field] = enum_cls(content[field])
            except ValueError:
                invalid.append(field)

        if invalid:
            raise ValidationError(
                f"Invalid or missing fields: {', '.join(invalid)}",
                fields=invalid,
            )
        return content

    def _log_transition(self, change_request: ChangeRequest, action: WorkflowAction, actor: Principal) -> None:
        logger.info(
            f"Change request {change_request.request_number} {action.value} by {actor.id}",
            extra={
                "change_request_id": change_request.id,
                "project_id": change_request.project_id,
                "request_number": change_request.request_number,
                "action": action.value,
                "status": change_request.status.value,
                "user_id": actor.id,
            },
        )
