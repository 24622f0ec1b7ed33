import pytest

from ballotcommit.claim_tokens import ClaimSigner
from ballotcommit.confirm_agent import BackendConfirmAgent
from ballotcommit.coordinator import SubmissionCoordinator
from ballotcommit.ledger_agent import LedgerCommitAgent
from ballotcommit.scheduler import RetryScheduler
from fakes import SIGNING_SECRET, FakeBackend, FakeClock, FakeLedger, RecordingSleep


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def sleep(clock):
    return RecordingSleep(clock)


@pytest.fixture
def make_coordinator(clock, ledger, backend, sleep):
    def build(**overrides):
        options = {
            "vote_history": backend,
            "claim_signer": ClaimSigner(SIGNING_SECRET),
            "scheduler": RetryScheduler(sleep=sleep),
            "clock": clock,
        }
        options.update(overrides)
        return SubmissionCoordinator(
            LedgerCommitAgent(ledger, backend),
            BackendConfirmAgent(backend),
            **options,
        )

    return build
