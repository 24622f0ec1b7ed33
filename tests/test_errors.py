import pytest

from ballotcommit.errors import AgentFailure, ErrorCategory, ErrorCode


def test_failure_variants():
    transient = AgentFailure.transient(ErrorCode.BACKEND_UNAVAILABLE, "POST /votes/confirm timed out")
    permanent = AgentFailure.permanent(ErrorCode.ALREADY_VOTED, "already voted")

    assert transient.retryable and not permanent.retryable
    assert str(permanent) == "already_voted: already voted"
    assert transient.tx_hash is None


@pytest.mark.parametrize(
    "failure, category",
    [
        (AgentFailure.permanent(ErrorCode.CLAIM_EXPIRED, "expired"), ErrorCategory.VALIDATION),
        (AgentFailure.transient(ErrorCode.REGISTRATION_FAILED, "congested"), ErrorCategory.TRANSIENT),
        (AgentFailure(ErrorCode.COMMIT_REJECTED, "not confirmed", retryable=True), ErrorCategory.TRANSIENT),
        (AgentFailure(ErrorCode.COMMIT_REJECTED, "logic eval error"), ErrorCategory.PERMANENT),
        (AgentFailure.permanent(ErrorCode.NOT_ENROLLED, "no fingerprint"), ErrorCategory.BIOMETRIC),
    ],
)
def test_category_follows_code_and_verdict(failure, category):
    assert failure.category is category
