"""Error Hierarchy: typed, categorized exceptions for all friendsync failure modes.

Invariants:
    - Every error has a code (str), category (ErrorCategory), severity (ErrorSeverity)
    - Precondition errors (400-level) are terminal: retryable is always False
    - TIMEOUT / TRANSIENT_STORE_FAILURE are retryable only for idempotent operations
    - to_response() produces REST envelope; to_sse_event() produces SSE envelope
    - user_message is short and specific, never a generic failure string

Design Decisions:
    - Single hierarchy with FriendSyncError base: FastAPI global handler catches all
    - ErrorContext as dataclass: actor/other/operation travel with the error so the
      handler can log them without re-deriving
    - Operation labels prefix user messages ("Block User: ...")
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from datetime import datetime, timezone

from friendsync.core.domain_types import (
    IDEMPOTENT_OPERATIONS, RelationshipOperation,
)


class ErrorSeverity(str, Enum):
    """Error severity for observability and client handling."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling."""
    VALIDATION = "validation"
    BUSINESS_RULE = "business_rule"
    PERMISSION = "permission"
    CONFLICT = "conflict"
    DATABASE = "database"
    TIMEOUT = "timeout"
    INTERNAL = "internal"


OPERATION_LABELS: dict[RelationshipOperation, str] = {
    RelationshipOperation.SEND_REQUEST: "Send Friend Request",
    RelationshipOperation.ACCEPT_REQUEST: "Accept Request",
    RelationshipOperation.DECLINE_REQUEST: "Decline Request",
    RelationshipOperation.CANCEL_REQUEST: "Cancel Request",
    RelationshipOperation.REMOVE_FRIEND: "Remove Friend",
    RelationshipOperation.BLOCK_USER: "Block User",
    RelationshipOperation.UNBLOCK_USER: "Unblock User",
    RelationshipOperation.REPORT_USER: "Report User",
}


@dataclass
class ErrorContext:
    """Rich context for error observability and debugging."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    actor_id: str | None = None
    other_id: str | None = None
    operation: RelationshipOperation | None = None
    idempotency_key: str | None = None
    debug_info: dict[str, Any] | None = None
    retry_after_ms: int | None = None


class FriendSyncError(Exception):
    """Base exception for all friendsync errors."""

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: ErrorContext | None = None,
        http_status: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.http_status = http_status

    @property
    def retryable(self) -> bool:
        """Whether the caller may blindly retry with the same idempotency key."""
        return False

    @property
    def user_message(self) -> str:
        """Message for the end user, prefixed with the operation label when known."""
        label = OPERATION_LABELS.get(self.context.operation)
        return f"{label}: {self.message}" if label else self.message

    def to_response(self) -> dict:
        """Convert to standardized REST error response."""
        return {
            "error": {
                "code": self.code,
                "message": self.user_message,
                "category": self.category.value,
                "severity": self.severity.value,
                "retryable": self.retryable,
                "timestamp": self.context.timestamp.isoformat(),
                "context": {
                    "operation": (
                        self.context.operation.value
                        if self.context.operation else None
                    ),
                    "other_id": self.context.other_id,
                    "retry_after_ms": self.context.retry_after_ms,
                },
            }
        }

    def to_sse_event(self) -> dict:
        """Convert to SSE error event."""
        return {
            "type": "error",
            "data": {
                "code": self.code,
                "message": self.user_message,
                "severity": self.severity.value,
                "retryable": self.retryable,
            },
        }


# ─── Precondition Errors (400-level, terminal) ───────────────────

class RelationshipError(FriendSyncError):
    """A requested transition is illegal from the pair's current state."""

    def __init__(
        self, message: str, code: str,
        category: ErrorCategory = ErrorCategory.BUSINESS_RULE,
        context: ErrorContext | None = None, http_status: int = 409,
    ):
        super().__init__(
            message, code, category, ErrorSeverity.WARNING, context, http_status,
        )


class SelfRequestError(RelationshipError):
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "You cannot perform this action on yourself.",
            "SELF_REQUEST", ErrorCategory.VALIDATION, context, 400,
        )


class AlreadyFriendsError(RelationshipError):
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "You are already friends with this user.",
            "ALREADY_FRIENDS", context=context,
        )


class RequestAlreadyPendingError(RelationshipError):
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "Friend request already pending.",
            "REQUEST_ALREADY_PENDING", context=context,
        )


class BlockedError(RelationshipError):
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "Cannot perform action on blocked user.",
            "BLOCKED", ErrorCategory.PERMISSION, context, 403,
        )


class NoPendingRequestError(RelationshipError):
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "There is no pending friend request.",
            "NO_PENDING_REQUEST", context=context, http_status=404,
        )


class NotRecipientError(RelationshipError):
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "Only the recipient can respond to this friend request.",
            "NOT_RECIPIENT", ErrorCategory.PERMISSION, context, 403,
        )


class NotInitiatorError(RelationshipError):
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "You can only cancel your own friend requests.",
            "NOT_INITIATOR", ErrorCategory.PERMISSION, context, 403,
        )


class NoSuchFriendshipError(RelationshipError):
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "You are not friends with this user.",
            "NO_SUCH_FRIENDSHIP", context=context, http_status=404,
        )


class NotBlockedError(RelationshipError):
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "User is not blocked.",
            "NOT_BLOCKED", context=context, http_status=404,
        )


class InvalidReasonError(RelationshipError):
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "Please provide a reason for the report.",
            "INVALID_REASON", ErrorCategory.VALIDATION, context, 400,
        )


class ConfirmationRequiredError(FriendSyncError):
    """Destructive action issued without the confirmation round-trip."""
    def __init__(self, prompt: str, context: ErrorContext | None = None):
        super().__init__(
            prompt, "CONFIRMATION_REQUIRED", ErrorCategory.VALIDATION,
            ErrorSeverity.INFO, context, 428,
        )


class IdempotencyKeyReusedError(FriendSyncError):
    """Idempotency key already recorded for a different operation or user."""
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "This idempotency key was already used for a different action.",
            "IDEMPOTENCY_KEY_REUSED", ErrorCategory.CONFLICT,
            ErrorSeverity.ERROR, context, 422,
        )


# ─── Infrastructure Errors (500-level) ───────────────────────────

def _is_idempotent(context: ErrorContext | None) -> bool:
    return bool(context and context.operation in IDEMPOTENT_OPERATIONS)


class MutationTimeoutError(FriendSyncError):
    """Mutating call did not complete within the configured timeout."""
    def __init__(self, timeout_seconds: float, context: ErrorContext | None = None):
        super().__init__(
            "The request timed out. Please try again.",
            "TIMEOUT", ErrorCategory.TIMEOUT,
            ErrorSeverity.ERROR, context, 504,
        )
        self.timeout_seconds = timeout_seconds

    @property
    def retryable(self) -> bool:
        return _is_idempotent(self.context)


class TransientStoreFailureError(FriendSyncError):
    """Store unavailable, or the pair stayed contended past the retry budget."""
    def __init__(
        self, message: str, operation: str, context: ErrorContext | None = None,
    ):
        super().__init__(
            "Unable to access relationship data. Please try again.",
            "TRANSIENT_STORE_FAILURE", ErrorCategory.DATABASE,
            ErrorSeverity.CRITICAL, context, 503,
        )
        self.detail = f"Store {operation} failed: {message}"
        self.store_operation = operation

    @property
    def retryable(self) -> bool:
        return _is_idempotent(self.context)


class InvariantViolationError(FriendSyncError):
    """A computed transition would break a pair invariant; nothing was written."""
    def __init__(self, violations: list[str], context: ErrorContext | None = None):
        super().__init__(
            "Something went wrong. Please try again.",
            "INTERNAL_ERROR", ErrorCategory.INTERNAL,
            ErrorSeverity.CRITICAL, context, 500,
        )
        self.violations = violations
