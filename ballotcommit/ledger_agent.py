import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

from .errors import AgentFailure, BackendUnavailable, ErrorCode, RejectedByBackend
from .models import ElectionInfo, LedgerIdentity, LedgerReceipt, SubmissionRequest, TxResult

logger = logging.getLogger(__name__)


class LedgerClient(Protocol):
    def connect_identity(self, secret: str) -> LedgerIdentity: ...

    def is_registered(self, contract: str, address: str) -> bool: ...

    def has_committed(self, contract: str, address: str) -> bool: ...

    def register(self, contract: str) -> TxResult: ...

    def commit_vote(self, contract: str, candidate_id: str, address: str) -> TxResult: ...

    def get_election_info(self, contract: str) -> ElectionInfo: ...

    def transaction_status(self, tx_hash: str) -> TxResult: ...


class ElectionDirectory(Protocol):
    def get_contract_address(self, election_id: str) -> str | None: ...


def _passthrough(secret: str) -> str:
    return secret


class LedgerCommitAgent:
    """
    Casts one vote on the ledger.

    Order is fixed: contract lookup, identity, duplicate check, registration,
    then the vote itself. The vote call is never reached unless the identity is
    known to be registered.

    When an earlier attempt broadcast the vote but never saw it included, the
    caller passes that transaction back in and it is looked up before anything
    else, so a vote that landed is reported as ours rather than as a duplicate.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        elections: ElectionDirectory,
        decrypt_secret: Callable[[str], str] = _passthrough,
    ) -> None:
        self._ledger = ledger
        self._elections = elections
        self._decrypt_secret = decrypt_secret
        # Blocking clients share connected-identity state, one vote at a time.
        self._lock = asyncio.Lock()

    async def commit(
        self, request: SubmissionRequest, pending_tx_hash: str | None = None
    ) -> LedgerReceipt | AgentFailure:
        async with self._lock:
            return await self._commit(request, pending_tx_hash)

    async def _commit(
        self, request: SubmissionRequest, pending_tx_hash: str | None
    ) -> LedgerReceipt | AgentFailure:
        contract = await self._resolve_contract(request.election_id)
        if isinstance(contract, AgentFailure):
            return contract

        if pending_tx_hash:
            landed = await self._lookup_pending(pending_tx_hash)
            if landed is not None:
                return landed

        try:
            info = await asyncio.to_thread(self._ledger.get_election_info, contract)
        except Exception as exc:  # noqa: BLE001
            return AgentFailure.transient(ErrorCode.LEDGER_UNAVAILABLE, f"Could not read election state: {exc}")
        if not info.is_active or info.is_finalized:
            return AgentFailure.permanent(ErrorCode.ELECTION_CLOSED, f"Election '{info.title}' is not open for voting")

        identity = await self._connect(request.wallet_secret)
        if isinstance(identity, AgentFailure):
            return identity

        try:
            already_voted = await asyncio.to_thread(self._ledger.has_committed, contract, identity.address)
        except Exception as exc:  # noqa: BLE001
            return AgentFailure.transient(
                ErrorCode.ALREADY_REGISTERED_CHECK_FAILED, f"Could not check ledger vote status: {exc}"
            )
        if already_voted:
            logger.info("Ledger already holds a vote from %s in election %s", identity.address, request.election_id)
            if pending_tx_hash:
                return AgentFailure(
                    code=ErrorCode.ALREADY_VOTED,
                    message=f"Ledger holds a vote from this voter but tx {pending_tx_hash} could not be located",
                    tx_hash=pending_tx_hash,
                )
            return AgentFailure.permanent(
                ErrorCode.ALREADY_VOTED, "You have already voted in this election on the blockchain"
            )

        registration_tx = await self._ensure_registered(contract, identity)
        if isinstance(registration_tx, AgentFailure):
            return registration_tx

        try:
            result = await asyncio.to_thread(
                self._ledger.commit_vote, contract, request.candidate_id, identity.address
            )
        except Exception as exc:  # noqa: BLE001
            return AgentFailure.transient(ErrorCode.LEDGER_UNAVAILABLE, f"Vote casting failed: {exc}")
        if not result.success or not result.tx_hash:
            return AgentFailure(
                code=ErrorCode.COMMIT_REJECTED,
                message=f"Vote casting failed: {result.error or 'no transaction hash'}",
                retryable=result.retryable,
                tx_hash=result.tx_hash if result.retryable else None,
            )

        logger.info(
            "Vote for election %s committed in tx %s (block %s)",
            request.election_id,
            result.tx_hash,
            result.block_number,
        )
        return LedgerReceipt(
            tx_hash=result.tx_hash,
            block_number=int(result.block_number or 0),
            registration_tx_hash=registration_tx or None,
        )

    async def _lookup_pending(self, tx_hash: str) -> LedgerReceipt | None:
        try:
            result = await asyncio.to_thread(self._ledger.transaction_status, tx_hash)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not look up earlier vote tx %s: %s", tx_hash, exc)
            return None
        if not result.success:
            logger.info("Earlier vote tx %s not included: %s", tx_hash, result.error)
            return None
        logger.info("Earlier vote tx %s was included in block %s", tx_hash, result.block_number)
        return LedgerReceipt(tx_hash=tx_hash, block_number=int(result.block_number or 0))

    async def _resolve_contract(self, election_id: str) -> str | AgentFailure:
        try:
            contract = await asyncio.to_thread(self._elections.get_contract_address, election_id)
        except BackendUnavailable as exc:
            return AgentFailure.transient(ErrorCode.BACKEND_UNAVAILABLE, f"Failed to get election details: {exc}")
        except RejectedByBackend as exc:
            return AgentFailure.permanent(ErrorCode.REJECTED_BY_BACKEND, f"Failed to get election details: {exc}")
        if not contract:
            return AgentFailure.permanent(ErrorCode.REJECTED_BY_BACKEND, "Election contract address not found")
        return contract

    async def _connect(self, wallet_secret: str) -> LedgerIdentity | AgentFailure:
        try:
            secret = self._decrypt_secret(wallet_secret)
        except ValueError:
            return AgentFailure.permanent(ErrorCode.IDENTITY_UNAVAILABLE, "Wallet secret could not be decrypted")
        try:
            return await asyncio.to_thread(self._ledger.connect_identity, secret)
        except ValueError:
            # Never include the secret or its parse error text.
            return AgentFailure.permanent(ErrorCode.IDENTITY_UNAVAILABLE, "Wallet secret is not a valid ledger key")
        except Exception as exc:  # noqa: BLE001
            return AgentFailure.transient(ErrorCode.LEDGER_UNAVAILABLE, f"Failed to connect wallet: {type(exc).__name__}")

    async def _ensure_registered(self, contract: str, identity: LedgerIdentity) -> str | AgentFailure:
        try:
            registered = await asyncio.to_thread(self._ledger.is_registered, contract, identity.address)
        except Exception as exc:  # noqa: BLE001
            return AgentFailure.transient(
                ErrorCode.ALREADY_REGISTERED_CHECK_FAILED, f"Could not check voter registration: {exc}"
            )
        if registered:
            return ""

        logger.info("Registering %s on election contract %s", identity.address, contract)
        try:
            result = await asyncio.to_thread(self._ledger.register, contract)
        except Exception as exc:  # noqa: BLE001
            return AgentFailure.transient(ErrorCode.REGISTRATION_FAILED, f"Voter registration failed: {exc}")
        if not result.success:
            code = ErrorCode.REGISTRATION_FAILED if result.retryable else ErrorCode.REGISTRATION_REJECTED
            return AgentFailure(code=code, message=f"Voter registration failed: {result.error}", retryable=result.retryable)
        return result.tx_hash or ""
