"""Enums for the change control system - these define the valid values for states and classifications."""
from enum import Enum


class ChangeRequestStatus(str, Enum):
    """The five states a ChangeRequest can be in. No other states are allowed."""
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    IMPLEMENTED = "implemented"


class ChangeRequestCategory(str, Enum):
    SCOPE = "scope"
    TIMELINE = "timeline"
    BUDGET = "budget"
    TECHNICAL = "technical"
    PROCESS = "process"
    RESOURCE = "resource"
    INTEGRATION = "integration"
    TRAINING = "training"


class ChangeRequestPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ImpactLevel(str, Enum):
    """Overall impact of the change as judged by the requester."""
    MINOR = "minor"
    MODERATE = "moderate"
    SIGNIFICANT = "significant"
    MAJOR = "major"


class ImpactArea(str, Enum):
    SCHEDULE = "schedule"
    BUDGET = "budget"
    SCOPE = "scope"
    RESOURCE = "resource"
    OTHER = "other"


class ImpactSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ApprovalDecision(str, Enum):
    """Outcome recorded in the approval ledger."""
    APPROVED = "approved"
    REJECTED = "rejected"


class WorkflowAction(str, Enum):
    """Actions the workflow engine can be asked to perform."""
    CREATE = "create"
    EDIT = "edit"
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    IMPLEMENT = "implement"
    DELETE = "delete"
    ADD_COMMENT = "add_comment"
    ADD_IMPACT = "add_impact"


class UserRole(str, Enum):
    """Roles supplied by the identity resolver."""
    ADMIN = "admin"
    HOSPITAL_LEADERSHIP = "hospital_leadership"
    HOSPITAL_STAFF = "hospital_staff"
    CONSULTANT = "consultant"
