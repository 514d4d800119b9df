"""
Internal audit logging model - NOT a user-facing domain object.

This model exists to provide immutable, append-only audit trails
for workflow actions and refusals. It is not exposed in user-facing APIs.
"""
from sqlalchemy import Column, String, Integer, DateTime, JSON
from app.database import Base
from app.utils.time import utc_now


class AuditEvent(Base):
    """
    Immutable audit event for reconstructing who did what to a change request.

    Invariants:
    - Once written, never edited or deleted
    - Append-only
    - Records all workflow actions and refusals
    """
    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    event_type = Column(String, nullable=False, index=True)  # e.g., "change_request_approved"
    entity_type = Column(String, nullable=False)  # e.g., "ChangeRequest", "Approval"
    entity_id = Column(String, nullable=False, index=True)  # ID of the entity being acted upon
    user_id = Column(String, nullable=True)  # Nullable for system events
    created_at = Column(DateTime, nullable=False, default=utc_now, index=True)
    payload_json = Column(JSON, nullable=True)  # Minimal contextual data


# Event type constants for consistency
class AuditEventType:
    """Enumeration of audit event types."""
    # Change request lifecycle
    CHANGE_REQUEST_CREATED = "change_request_created"
    CHANGE_REQUEST_UPDATED = "change_request_updated"
    CHANGE_REQUEST_SUBMITTED = "change_request_submitted"
    CHANGE_REQUEST_APPROVED = "change_request_approved"
    CHANGE_REQUEST_REJECTED = "change_request_rejected"
    CHANGE_REQUEST_IMPLEMENTED = "change_request_implemented"
    CHANGE_REQUEST_DELETED = "change_request_deleted"

    # Side records
    IMPACT_ADDED = "impact_added"
    COMMENT_ADDED = "comment_added"

    # Refusal events
    ACTION_REFUSED = "action_refused"
