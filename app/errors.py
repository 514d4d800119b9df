"""Domain errors - centralized exception hierarchy for the change control service."""
from typing import Any, Dict, List, Optional


class DomainError(Exception):
    """Base domain error - all errors extend this"""

    error_code: str = "DOMAIN_ERROR"
    http_status: int = 400

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to API response dict"""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationError(DomainError):
    """Missing or invalid required field. Carries the offending field names."""
    error_code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        self.fields = fields or []
        super().__init__(message, details={"fields": self.fields})


class InvalidTransition(DomainError):
    """Action not permitted from the request's current status"""
    error_code = "INVALID_TRANSITION"
    http_status = 409

    def __init__(self, action: str, current_status: str, message: Optional[str] = None):
        self.action = action
        self.current_status = current_status
        super().__init__(
            message or f"Cannot {action} a change request in status '{current_status}'",
            details={"action": action, "current_status": current_status},
        )


class AlreadyDecided(DomainError):
    """A decision lost the race to a concurrent decision on the same request"""
    error_code = "ALREADY_DECIDED"
    http_status = 409

    def __init__(self, change_request_id: str, current_status: Optional[str] = None):
        self.change_request_id = change_request_id
        self.current_status = current_status
        super().__init__(
            f"Change request {change_request_id} has already been decided",
            details={"change_request_id": change_request_id, "current_status": current_status},
        )


class NotFound(DomainError):
    """Unknown change request or project"""
    error_code = "NOT_FOUND"
    http_status = 404


class Forbidden(DomainError):
    """Acting principal lacks the role or ownership required for the action"""
    error_code = "FORBIDDEN"
    http_status = 403


class AuthenticationRequired(DomainError):
    """No acting principal could be resolved for the request"""
    error_code = "AUTHENTICATION_REQUIRED"
    http_status = 401


class StorageFailure(DomainError):
    """Underlying persistence unavailable; nothing was written"""
    error_code = "STORAGE_FAILURE"
    http_status = 503
