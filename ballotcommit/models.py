"""
Data model of the vote submission pipeline.

Request-side types are frozen; SubmissionRecord is mutated only by
SubmissionCoordinator, which hands out copies to readers.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import ErrorCode


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {SubmissionStatus.CONFIRMED, SubmissionStatus.FAILED, SubmissionStatus.REJECTED}
)


@dataclass(frozen=True)
class VerificationClaim:
    subject_id: str
    device_id: str
    captured_at: float
    claim_hash: str = field(repr=False)
    confidence: float | None = None
    election_id: str | None = None
    nonce: str = ""


@dataclass(frozen=True)
class SubmissionRequest:
    election_id: str
    candidate_id: str
    voter_id: str
    verification_claim: VerificationClaim | None
    wallet_secret: str = field(repr=False)
    timestamp: float
    position: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str]:
        return (self.election_id, self.voter_id)


@dataclass
class SubmissionRecord:
    submission_id: str
    request: SubmissionRequest
    status: SubmissionStatus
    submitted_at: float
    tx_hash: str | None = None
    block_number: int | None = None
    pending_tx_hash: str | None = None
    confirmation_id: str | None = None
    error: str | None = None
    error_code: ErrorCode | None = None
    confirmed_at: float | None = None
    retry_count: int = 0
    ledger_committed: bool = False
    attempt_errors: list[str] = field(default_factory=list)

    @property
    def diverged(self) -> bool:
        """The vote is on the ledger but the backend never confirmed it."""
        return self.ledger_committed and self.status in (SubmissionStatus.FAILED, SubmissionStatus.REJECTED)


@dataclass(frozen=True)
class SensorAvailability:
    has_hardware: bool
    is_enrolled: bool


@dataclass(frozen=True)
class AuthenticationResult:
    success: bool
    error: str | None = None
    confidence: float | None = None


@dataclass(frozen=True)
class LedgerIdentity:
    address: str


@dataclass(frozen=True)
class TxResult:
    success: bool
    tx_hash: str | None = None
    block_number: int | None = None
    error: str | None = None
    retryable: bool = True


@dataclass(frozen=True)
class ElectionInfo:
    title: str
    start_time: int
    end_time: int
    is_active: bool
    is_finalized: bool


@dataclass(frozen=True)
class LedgerReceipt:
    tx_hash: str
    block_number: int
    registration_tx_hash: str | None = None


@dataclass(frozen=True)
class WalletMaterial:
    encrypted_private_key: str = field(repr=False)
    wallet_address: str | None = None
