"""Domain models - the change request and the records hanging off it."""
import uuid

from sqlalchemy import (
    Column,
    String,
    Integer,
    Text,
    Date,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship

from app.database import Base
from app.models.enums import (
    ChangeRequestStatus,
    ChangeRequestCategory,
    ChangeRequestPriority,
    ImpactLevel,
    ImpactArea,
    ImpactSeverity,
    ApprovalDecision,
)
from app.utils.time import utc_now


def _new_id() -> str:
    return str(uuid.uuid4())


def _values(enum_cls):
    # Store the lowercase enum values rather than the member names
    return [member.value for member in enum_cls]


class ChangeRequest(Base):
    """
    A change request progresses through: draft → submitted → approved/rejected → implemented.

    Invariants enforced here:
    - Status is always one of the five allowed states
    - request_number is unique within a project
    - requested_by_* are captured at creation and never change

    Status changes are only performed by the WorkflowEngine.
    """
    __tablename__ = "change_requests"
    __table_args__ = (
        UniqueConstraint("project_id", "request_number", name="uq_change_requests_project_number"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    project_id = Column(String, nullable=False, index=True)
    request_number = Column(String, nullable=False)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    category = Column(
        SQLEnum(ChangeRequestCategory, values_callable=_values),
        nullable=False,
        default=ChangeRequestCategory.SCOPE,
    )
    priority = Column(
        SQLEnum(ChangeRequestPriority, values_callable=_values),
        nullable=False,
        default=ChangeRequestPriority.MEDIUM,
    )
    impact_level = Column(
        SQLEnum(ImpactLevel, values_callable=_values),
        nullable=False,
        default=ImpactLevel.MODERATE,
    )
    justification = Column(Text, nullable=True)
    proposed_solution = Column(Text, nullable=True)
    estimated_effort = Column(String, nullable=True)  # Free-form, e.g. "2 weeks"
    estimated_cost = Column(String, nullable=True)  # Free-form, e.g. "$15,000"
    target_implementation_date = Column(Date, nullable=True)

    # Provenance - immutable
    requested_by_id = Column(String, nullable=False)
    requested_by_name = Column(String, nullable=True)

    status = Column(
        SQLEnum(ChangeRequestStatus, values_callable=_values),
        nullable=False,
        default=ChangeRequestStatus.DRAFT,
        index=True,
    )

    # Lifecycle timestamps - each set exactly once, never cleared
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now)
    submitted_at = Column(DateTime, nullable=True)
    decided_at = Column(DateTime, nullable=True)
    implemented_at = Column(DateTime, nullable=True)
    actual_implementation_date = Column(Date, nullable=True)

    # Relationships
    impacts = relationship(
        "Impact",
        back_populates="change_request",
        cascade="all, delete-orphan",
        order_by="Impact.created_at",
    )
    # Listing order for approvals and comments is applied by the ledger and thread services
    approvals = relationship("Approval", back_populates="change_request")
    comments = relationship("Comment", back_populates="change_request", cascade="all, delete-orphan")


class Impact(Base):
    """
    Impact assessment attached to a change request.

    Invariants:
    - Never mutated after creation
    - Removed only together with the parent request
    """
    __tablename__ = "change_request_impacts"

    id = Column(String(36), primary_key=True, default=_new_id)
    change_request_id = Column(String(36), ForeignKey("change_requests.id"), nullable=False, index=True)
    impact_area = Column(SQLEnum(ImpactArea, values_callable=_values), nullable=False)
    description = Column(Text, nullable=True)
    severity = Column(
        SQLEnum(ImpactSeverity, values_callable=_values),
        nullable=False,
        default=ImpactSeverity.MEDIUM,
    )
    created_at = Column(DateTime, nullable=False, default=utc_now)

    change_request = relationship("ChangeRequest", back_populates="impacts")


class Approval(Base):
    """
    One approve/reject decision on a change request.

    Invariants:
    - Append-only: never edited or deleted
    - At most one per change request (unique change_request_id)
    - comments required when decision is rejected
    """
    __tablename__ = "change_request_approvals"
    __table_args__ = (
        UniqueConstraint("change_request_id", name="uq_approvals_change_request"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    change_request_id = Column(String(36), ForeignKey("change_requests.id"), nullable=False)
    approver_id = Column(String, nullable=False)
    approver_name = Column(String, nullable=True)
    approver_role = Column(String, nullable=False)
    decision = Column(SQLEnum(ApprovalDecision, values_callable=_values), nullable=False)
    comments = Column(Text, nullable=True)
    decided_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    change_request = relationship("ChangeRequest", back_populates="approvals")


class Comment(Base):
    """
    Discussion entry on a change request. Append-only, allowed in every state.

    seq is a global insertion counter used to keep listing order stable
    when two comments share a created_at.
    """
    __tablename__ = "change_request_comments"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), unique=True, nullable=False, default=_new_id)
    change_request_id = Column(String(36), ForeignKey("change_requests.id"), nullable=False, index=True)
    author_id = Column(String, nullable=False)
    author_name = Column(String, nullable=True)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    change_request = relationship("ChangeRequest", back_populates="comments")


class RequestSequence(Base):
    """Per project and year counter backing CR-<year>-<seq> numbering. Never decremented."""
    __tablename__ = "change_request_sequences"

    project_id = Column(String, primary_key=True)
    year = Column(Integer, primary_key=True)
    last_value = Column(Integer, nullable=False, default=0)
