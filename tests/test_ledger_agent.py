import asyncio
import dataclasses

from ballotcommit.errors import AgentFailure, BackendUnavailable, ErrorCode, RejectedByBackend
from ballotcommit.ledger_agent import LedgerCommitAgent
from ballotcommit.models import ElectionInfo, LedgerReceipt, TxResult
from fakes import FakeClock, make_request


class _Directory:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error

    def get_contract_address(self, election_id):
        if self.error:
            raise self.error
        return self.result


def _commit(ledger, backend, **kwargs):
    agent = LedgerCommitAgent(ledger, backend, **kwargs)
    return asyncio.run(agent.commit(make_request(FakeClock())))


def test_registers_then_votes(ledger, backend):
    receipt = _commit(ledger, backend)

    assert isinstance(receipt, LedgerReceipt)
    assert receipt.tx_hash == "TX0002"
    assert receipt.registration_tx_hash == "TX0001"
    assert [name for name, _ in ledger.trace] == [
        "connect_identity",
        "has_committed",
        "is_registered",
        "register",
        "commit_vote",
    ]


def test_registered_voter_skips_registration(ledger, backend):
    ledger.registered.add("ADDR_voter-1")

    receipt = _commit(ledger, backend)

    assert receipt.registration_tx_hash is None
    assert ledger.transactions() == ["commit_vote"]


def test_existing_vote_is_permanent(ledger, backend):
    ledger.committed["ADDR_voter-1"] = "1"

    failure = _commit(ledger, backend)

    assert failure == AgentFailure.permanent(
        ErrorCode.ALREADY_VOTED, "You have already voted in this election on the blockchain"
    )
    assert ledger.transactions() == []


def test_failed_duplicate_check_is_transient(ledger, backend):
    ledger.check_errors.append(ConnectionError("node unreachable"))

    failure = _commit(ledger, backend)

    assert failure.code is ErrorCode.ALREADY_REGISTERED_CHECK_FAILED
    assert failure.retryable
    assert ledger.transactions() == []


def test_rejected_registration_is_permanent(ledger, backend):
    ledger.register_results.append(TxResult(success=False, error="logic eval error", retryable=False))

    failure = _commit(ledger, backend)

    assert failure.code is ErrorCode.REGISTRATION_REJECTED
    assert not failure.retryable
    assert ledger.transactions() == ["register"]


def test_congested_commit_is_retryable(ledger, backend):
    ledger.commit_results.append(TxResult(success=False, error="Transaction not confirmed after 12 rounds"))

    failure = _commit(ledger, backend)

    assert failure.code is ErrorCode.COMMIT_REJECTED
    assert failure.retryable


def test_contract_lookup_failures(ledger):
    unavailable = _commit(ledger, _Directory(error=BackendUnavailable("GET /elections/election-1 returned 503")))
    rejected = _commit(ledger, _Directory(error=RejectedByBackend("Election not found", status_code=404)))
    missing = _commit(ledger, _Directory(result=None))

    assert unavailable.code is ErrorCode.BACKEND_UNAVAILABLE and unavailable.retryable
    assert rejected.code is ErrorCode.REJECTED_BY_BACKEND and not rejected.retryable
    assert missing.message == "Election contract address not found"
    assert ledger.trace == []


def test_closed_election_is_permanent(ledger, backend):
    ledger.info = ElectionInfo(title="Board", start_time=0, end_time=10, is_active=False, is_finalized=True)

    failure = _commit(ledger, backend)

    assert failure.code is ErrorCode.ELECTION_CLOSED
    assert ledger.trace == []


def test_unusable_wallet_secret_is_reported_without_the_secret(ledger, backend):
    agent = LedgerCommitAgent(ledger, backend)
    request = dataclasses.replace(make_request(FakeClock()), wallet_secret="not-a-mnemonic")

    failure = asyncio.run(agent.commit(request))

    assert failure.code is ErrorCode.IDENTITY_UNAVAILABLE
    assert "not-a-mnemonic" not in failure.message


def test_secret_is_decrypted_before_connecting(ledger, backend):
    seen = []

    def decrypt(secret):
        seen.append(secret)
        return secret

    _commit(ledger, backend, decrypt_secret=decrypt)

    assert seen == ["mnemonic:voter-1"]
    assert ledger.trace[0] == ("connect_identity", "ADDR_voter-1")


def test_unconfirmed_broadcast_carries_its_tx_hash(ledger, backend):
    ledger.commit_results.append(
        TxResult(success=False, tx_hash="TXLATE", error="Transaction not confirmed after 12 rounds", retryable=True)
    )

    failure = _commit(ledger, backend)

    assert failure.code is ErrorCode.COMMIT_REJECTED
    assert failure.retryable
    assert failure.tx_hash == "TXLATE"


def test_pending_tx_that_landed_is_returned_without_new_transactions(ledger, backend):
    ledger.included["TXLATE"] = 250
    agent = LedgerCommitAgent(ledger, backend)

    receipt = asyncio.run(agent.commit(make_request(FakeClock()), pending_tx_hash="TXLATE"))

    assert receipt == LedgerReceipt(tx_hash="TXLATE", block_number=250)
    assert ledger.trace == [("transaction_status", "TXLATE")]


def test_pending_tx_not_found_falls_back_to_a_fresh_commit(ledger, backend):
    agent = LedgerCommitAgent(ledger, backend)

    receipt = asyncio.run(agent.commit(make_request(FakeClock()), pending_tx_hash="TXGONE"))

    assert isinstance(receipt, LedgerReceipt)
    assert receipt.tx_hash == "TX0002"
    assert ledger.transactions() == ["register", "commit_vote"]
