"""
Custom exceptions for the trip collaboration core.

Lower layers raise these; the trip service façade turns every business
condition into a typed ``ServiceResult`` failure and lets infrastructure
errors propagate.
"""

from typing import Optional, Dict, Any
from enum import Enum


class ErrorCategory(str, Enum):
    """Coarse error taxonomy used by callers to decide how to react."""

    VALIDATION = "validation"
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    STATE_CONFLICT = "state_conflict"
    INFRASTRUCTURE = "infrastructure"


class ErrorCode(str, Enum):
    """Standardized error codes for the application."""

    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_ROLE = "INVALID_ROLE"

    # Authorization errors
    PERMISSION_DENIED = "PERMISSION_DENIED"

    # Lookup errors
    TRIP_NOT_FOUND = "TRIP_NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    INVITATION_NOT_FOUND = "INVITATION_NOT_FOUND"
    COLLABORATOR_NOT_FOUND = "COLLABORATOR_NOT_FOUND"

    # Collaboration state errors
    ALREADY_COLLABORATOR = "ALREADY_COLLABORATOR"
    INVITATION_PENDING = "INVITATION_PENDING"
    OWNER_IMMUTABLE = "OWNER_IMMUTABLE"
    VERSION_CONFLICT = "VERSION_CONFLICT"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"

    # System errors
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


class TripShareException(Exception):
    """Base exception for the collaboration core."""

    category: ErrorCategory = ErrorCategory.INFRASTRUCTURE
    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 500
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.status_code = status_code


class TripValidationError(TripShareException):
    """Raised when caller input is malformed. Never reaches the store."""

    category = ErrorCategory.VALIDATION

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_ERROR,
            details=details,
            status_code=422
        )


class InvalidRoleError(TripShareException):
    """Raised when a role cannot be granted through the requested operation."""

    category = ErrorCategory.VALIDATION

    def __init__(self, role: str, allowed: Optional[list] = None):
        details = {"requested_role": role}
        if allowed:
            details["allowed_roles"] = allowed
        super().__init__(
            message=f"Role '{role}' cannot be assigned here",
            error_code=ErrorCode.INVALID_ROLE,
            details=details,
            status_code=422
        )


class PermissionDeniedError(TripShareException):
    """Raised when the permission evaluator denies an action."""

    category = ErrorCategory.PERMISSION_DENIED

    def __init__(self, trip_id: str, user_id: str, permission: str):
        super().__init__(
            message=f"User lacks '{permission}' on this trip",
            error_code=ErrorCode.PERMISSION_DENIED,
            details={"trip_id": trip_id, "user_id": user_id, "permission": permission},
            status_code=403
        )


class TripNotFoundError(TripShareException):
    """Raised when a trip is absent or hidden from the caller."""

    category = ErrorCategory.NOT_FOUND

    def __init__(self, trip_id: str):
        super().__init__(
            message="Trip not found",
            error_code=ErrorCode.TRIP_NOT_FOUND,
            details={"trip_id": trip_id},
            status_code=404
        )


class UserNotFoundError(TripShareException):
    """Raised when an invitee is unknown to the user directory."""

    category = ErrorCategory.NOT_FOUND

    def __init__(self, user_id: str):
        super().__init__(
            message="User not found",
            error_code=ErrorCode.USER_NOT_FOUND,
            details={"user_id": user_id},
            status_code=404
        )


class InvitationNotFoundError(TripShareException):
    """Raised when accept/decline finds no pending invitation."""

    category = ErrorCategory.NOT_FOUND

    def __init__(self, trip_id: str, user_id: str):
        super().__init__(
            message="No pending invitation found for this user",
            error_code=ErrorCode.INVITATION_NOT_FOUND,
            details={"trip_id": trip_id, "user_id": user_id},
            status_code=404
        )


class CollaboratorNotFoundError(TripShareException):
    """Raised when the target of remove/change-role has no live membership."""

    category = ErrorCategory.NOT_FOUND

    def __init__(self, trip_id: str, user_id: str):
        super().__init__(
            message="Collaborator not found",
            error_code=ErrorCode.COLLABORATOR_NOT_FOUND,
            details={"trip_id": trip_id, "user_id": user_id},
            status_code=404
        )


class StateConflictError(TripShareException):
    """Caller-recoverable conflict with the current collaboration state."""

    category = ErrorCategory.STATE_CONFLICT

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            status_code=409
        )


class AlreadyCollaboratorError(StateConflictError):
    def __init__(self, trip_id: str, user_id: str):
        super().__init__(
            message="User is already a collaborator on this trip",
            error_code=ErrorCode.ALREADY_COLLABORATOR,
            details={"trip_id": trip_id, "user_id": user_id}
        )


class InvitationPendingError(StateConflictError):
    def __init__(self, trip_id: str, user_id: str):
        super().__init__(
            message="User already has a pending invitation",
            error_code=ErrorCode.INVITATION_PENDING,
            details={"trip_id": trip_id, "user_id": user_id}
        )


class OwnerImmutableError(StateConflictError):
    def __init__(self, trip_id: str):
        super().__init__(
            message="The trip owner cannot be removed or re-roled",
            error_code=ErrorCode.OWNER_IMMUTABLE,
            details={"trip_id": trip_id}
        )


class VersionConflictError(StateConflictError):
    def __init__(self, trip_id: str, expected: int, actual: int):
        super().__init__(
            message=f"Trip was modified concurrently (expected version {expected}, found {actual})",
            error_code=ErrorCode.VERSION_CONFLICT,
            details={"trip_id": trip_id, "expected_version": expected, "actual_version": actual}
        )


class ConcurrentModificationError(StateConflictError):
    """Raised when a read-modify-write keeps losing the version race."""

    retryable = True

    def __init__(self, trip_id: str, attempts: int):
        super().__init__(
            message=f"Trip kept changing underneath the write after {attempts} attempts",
            error_code=ErrorCode.CONCURRENT_MODIFICATION,
            details={"trip_id": trip_id, "attempts": attempts}
        )


class StoreUnavailableError(TripShareException):
    """Raised when the document store cannot be reached. Always aborts."""

    category = ErrorCategory.INFRASTRUCTURE
    retryable = True

    def __init__(self, operation: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"Trip store unavailable during '{operation}'",
            error_code=ErrorCode.STORE_UNAVAILABLE,
            details=details or {"operation": operation},
            status_code=503
        )
