from .biometric_gate import BiometricGate
from .confirm_agent import BackendConfirmAgent
from .coordinator import SubmissionCoordinator
from .ledger_agent import LedgerCommitAgent
from .models import SubmissionRecord, SubmissionRequest, SubmissionStatus, VerificationClaim
from .pipeline import build_pipeline

__all__ = [
    "BackendConfirmAgent",
    "BiometricGate",
    "LedgerCommitAgent",
    "SubmissionCoordinator",
    "SubmissionRecord",
    "SubmissionRequest",
    "SubmissionStatus",
    "VerificationClaim",
    "build_pipeline",
]
