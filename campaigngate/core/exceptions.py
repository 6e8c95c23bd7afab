"""
Campaign Gate Exception Hierarchy

Custom exceptions for governance, access control and export gating.
Codes mirror the request-level failure kinds callers switch on.
"""

from typing import Any, Dict, List, Optional


class CampaignGateError(Exception):
    """Base exception for all Campaign Gate errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "campaigngate-error"
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class UnauthenticatedError(CampaignGateError):
    """Raised when a request carries no authenticated actor."""

    def __init__(self, message: str = "User must be authenticated"):
        super().__init__(message, code="unauthenticated")


class PermissionDeniedError(CampaignGateError):
    """Raised when the actor may not perform the requested action."""

    def __init__(
        self,
        message: str,
        actor_id: Optional[str] = None,
        permission: Optional[str] = None,
        rule: Optional[str] = None,
    ):
        super().__init__(
            message,
            code="permission-denied",
            details={
                "actor_id": actor_id,
                "permission": permission,
                "rule": rule,
            },
        )
        self.actor_id = actor_id
        self.permission = permission
        self.rule = rule


class NotFoundError(CampaignGateError):
    """Raised when a referenced user, campaign or review is missing."""

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        document_id: Optional[str] = None,
    ):
        super().__init__(
            message,
            code="not-found",
            details={
                "collection": collection,
                "document_id": document_id,
            },
        )
        self.collection = collection
        self.document_id = document_id


class PreconditionFailedError(CampaignGateError):
    """Raised when a state-machine precondition is violated."""

    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
        current_status: Optional[str] = None,
    ):
        super().__init__(
            message,
            code="failed-precondition",
            details={
                "errors": errors or [],
                "current_status": current_status,
            },
        )
        self.errors = errors or []
        self.current_status = current_status


class ValidationError(PreconditionFailedError):
    """
    Raised when blocking validation rules stop a state transition.

    Callers see it as a failed precondition carrying every blocking error.
    """

    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
        warnings: Optional[List[str]] = None,
        current_status: Optional[str] = None,
    ):
        super().__init__(message, errors=errors, current_status=current_status)
        self.warnings = warnings or []
        self.details["warnings"] = self.warnings


class InvalidArgumentError(CampaignGateError):
    """Raised when a request payload is malformed."""

    def __init__(
        self,
        message: str,
        problems: Optional[List[str]] = None,
    ):
        super().__init__(
            message,
            code="invalid-argument",
            details={"problems": problems or []},
        )
        self.problems = problems or []


class InternalError(CampaignGateError):
    """
    Raised for unexpected failures.

    The message is generic; detail stays in the server-side log.
    """

    def __init__(
        self,
        message: str = "Internal server error",
        code: str = "internal",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, code=code, details=details)


class AuditWriteError(InternalError):
    """
    Raised when an audit entry could not be persisted.

    The governed action may already have taken effect, so callers must
    report this distinctly instead of treating the request as a success.
    """

    def __init__(
        self,
        message: str,
        action: Optional[str] = None,
        resource_id: Optional[str] = None,
        audit_hash: Optional[str] = None,
    ):
        super().__init__(
            message,
            code="audit-write-failed",
            details={
                "action": action,
                "resource_id": resource_id,
                "hash": audit_hash,
            },
        )
        self.action = action
        self.resource_id = resource_id
        self.audit_hash = audit_hash


class StoreError(CampaignGateError):
    """Raised when the document store fails."""

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(
            message,
            code="store-error",
            details={
                "collection": collection,
                "operation": operation,
            },
        )
        self.collection = collection
        self.operation = operation
