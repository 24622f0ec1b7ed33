from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    BIOMETRIC = "biometric"


class ErrorCode(str, Enum):
    MISSING_FIELDS = "missing_fields"
    REQUEST_EXPIRED = "request_expired"
    CLAIM_EXPIRED = "claim_expired"
    INVALID_CLAIM = "invalid_claim"
    CLAIM_REPLAYED = "claim_replayed"
    DUPLICATE_IN_FLIGHT = "duplicate_in_flight"

    BACKEND_UNAVAILABLE = "backend_unavailable"
    LEDGER_UNAVAILABLE = "ledger_unavailable"
    ALREADY_REGISTERED_CHECK_FAILED = "already_registered_check_failed"
    REGISTRATION_FAILED = "registration_failed"

    ALREADY_VOTED = "already_voted"
    IDENTITY_UNAVAILABLE = "identity_unavailable"
    REGISTRATION_REJECTED = "registration_rejected"
    COMMIT_REJECTED = "commit_rejected"
    REJECTED_BY_BACKEND = "rejected_by_backend"
    ELECTION_CLOSED = "election_closed"
    CANCELLED = "cancelled"

    BIOMETRIC_UNAVAILABLE = "biometric_unavailable"
    NOT_ENROLLED = "not_enrolled"
    AUTHENTICATION_FAILED = "authentication_failed"
    USER_CANCELLED = "user_cancelled"


_VALIDATION_CODES = frozenset(
    {
        ErrorCode.MISSING_FIELDS,
        ErrorCode.REQUEST_EXPIRED,
        ErrorCode.CLAIM_EXPIRED,
        ErrorCode.INVALID_CLAIM,
        ErrorCode.CLAIM_REPLAYED,
        ErrorCode.DUPLICATE_IN_FLIGHT,
    }
)
_BIOMETRIC_CODES = frozenset(
    {
        ErrorCode.BIOMETRIC_UNAVAILABLE,
        ErrorCode.NOT_ENROLLED,
        ErrorCode.AUTHENTICATION_FAILED,
        ErrorCode.USER_CANCELLED,
    }
)


@dataclass(frozen=True)
class AgentFailure:
    """Failure variant returned by the ledger and backend agents."""

    code: ErrorCode
    message: str
    retryable: bool = False
    # Set when a transaction was broadcast but its inclusion was never seen.
    tx_hash: str | None = None

    @classmethod
    def transient(cls, code: ErrorCode, message: str) -> "AgentFailure":
        return cls(code=code, message=message, retryable=True)

    @classmethod
    def permanent(cls, code: ErrorCode, message: str) -> "AgentFailure":
        return cls(code=code, message=message, retryable=False)

    @property
    def category(self) -> ErrorCategory:
        if self.code in _VALIDATION_CODES:
            return ErrorCategory.VALIDATION
        if self.code in _BIOMETRIC_CODES:
            return ErrorCategory.BIOMETRIC
        # Ledger and backend codes take their category from the agent's verdict.
        return ErrorCategory.TRANSIENT if self.retryable else ErrorCategory.PERMANENT

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class BiometricError(Exception):
    code = ErrorCode.AUTHENTICATION_FAILED

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class BiometricUnavailable(BiometricError):
    code = ErrorCode.BIOMETRIC_UNAVAILABLE


class NotEnrolled(BiometricError):
    code = ErrorCode.NOT_ENROLLED


class AuthenticationFailed(BiometricError):
    code = ErrorCode.AUTHENTICATION_FAILED


class UserCancelled(BiometricError):
    code = ErrorCode.USER_CANCELLED


class BackendError(Exception):
    pass


class BackendUnavailable(BackendError):
    """Network failure, timeout, throttling or a 5xx from the record service."""


class RejectedByBackend(BackendError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
