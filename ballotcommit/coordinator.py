import asyncio
import dataclasses
import logging
import secrets
import time
from collections.abc import Callable
from typing import Protocol

from .claim_tokens import ClaimSigner
from .confirm_agent import BackendConfirmAgent
from .errors import AgentFailure, BackendError, ErrorCode
from .ledger_agent import LedgerCommitAgent
from .models import SubmissionRecord, SubmissionRequest, SubmissionStatus
from .scheduler import RetryScheduler

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 5.0
DEFAULT_CLAIM_TTL = 5 * 60.0
DEFAULT_REQUEST_TTL = 5 * 60.0
DEFAULT_STATUS_TTL = 24 * 60 * 60.0
CLOCK_SKEW_SECONDS = 60.0


class VoteHistory(Protocol):
    def has_voted(self, election_id: str, voter_id: str) -> bool: ...


class SubmissionCoordinator:
    """
    Drives each vote submission from request to a terminal status.

    Records are owned here: every status change goes through _transition, and
    callers only ever see copies. One submission per (election_id, voter_id)
    may be active at a time; distinct voters run as independent tasks.

    A vote is committed to the ledger at most once per submission. After the
    ledger accepts it, retries only repeat the backend confirmation, and a
    terminal failure from then on is reported as a ledger/backend divergence.
    """

    def __init__(
        self,
        ledger_agent: LedgerCommitAgent,
        confirm_agent: BackendConfirmAgent,
        vote_history: VoteHistory | None = None,
        claim_signer: ClaimSigner | None = None,
        scheduler: RetryScheduler | None = None,
        clock: Callable[[], float] = time.time,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        claim_ttl: float = DEFAULT_CLAIM_TTL,
        request_ttl: float = DEFAULT_REQUEST_TTL,
        status_ttl: float = DEFAULT_STATUS_TTL,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self._ledger_agent = ledger_agent
        self._confirm_agent = confirm_agent
        self._vote_history = vote_history
        self._claim_signer = claim_signer
        self._scheduler = scheduler or RetryScheduler()
        self._clock = clock
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._claim_ttl = claim_ttl
        self._request_ttl = request_ttl
        self._status_ttl = status_ttl

        self._queue: dict[str, SubmissionRecord] = {}
        self._status_cache: dict[str, SubmissionRecord] = {}
        self._active_keys: dict[tuple[str, str], str] = {}
        self._committed_keys: dict[tuple[str, str], float] = {}
        self._used_claims: dict[str, tuple[str, float]] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    async def submit(self, request: SubmissionRequest) -> SubmissionRecord:
        """Run one submission through the whole pipeline and return its final state."""
        record = await self.enqueue(request)
        if record.status.is_terminal:
            return record
        final = await self.wait_for(record.submission_id)
        return final if final is not None else record

    async def enqueue(self, request: SubmissionRequest) -> SubmissionRecord:
        """Validate and start a submission in the background."""
        self.clear_old_submissions()
        now = self._clock()
        record = SubmissionRecord(
            submission_id=self._new_submission_id(now),
            request=request,
            status=SubmissionStatus.PENDING,
            submitted_at=now,
        )
        submission_id = record.submission_id
        self._status_cache[submission_id] = record

        # Check and reserve the key with no await in between.
        key = request.key
        if key in self._active_keys:
            self._finish(
                record,
                SubmissionStatus.FAILED,
                AgentFailure.permanent(
                    ErrorCode.DUPLICATE_IN_FLIGHT, "A vote for this election is already being submitted"
                ),
            )
            return self._snapshot(record)
        self._active_keys[key] = submission_id
        self._queue[submission_id] = record
        logger.info("Submission %s queued for election %s", submission_id, request.election_id)

        failure = await self._validate(request, submission_id, now)
        if record.status.is_terminal:
            return self._snapshot(record)
        if failure is not None:
            self._finish(record, SubmissionStatus.FAILED, failure)
            return self._snapshot(record)

        self._transition(record, SubmissionStatus.PROCESSING)
        self._tasks[submission_id] = asyncio.create_task(self._run(record))
        return self._snapshot(record)

    async def wait_for(self, submission_id: str) -> SubmissionRecord | None:
        task = self._tasks.get(submission_id)
        if task is not None:
            await task
        return self.get_status(submission_id)

    async def drain(self) -> None:
        """Wait until every in-flight submission has reached a terminal status."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()))

    def cancel(self, submission_id: str) -> bool:
        """
        Reject a submission that is waiting to be retried.

        Takes effect before the next attempt starts; a ledger transaction that
        was already broadcast cannot be recalled.
        """
        record = self._queue.get(submission_id)
        if record is None or record.status is not SubmissionStatus.PENDING:
            return False
        self._scheduler.cancel(submission_id)
        self._finish(
            record,
            SubmissionStatus.REJECTED,
            AgentFailure.permanent(ErrorCode.CANCELLED, "Submission cancelled by user"),
        )
        return True

    def get_status(self, submission_id: str) -> SubmissionRecord | None:
        record = self._status_cache.get(submission_id)
        return self._snapshot(record) if record is not None else None

    def pending_submissions(self) -> list[SubmissionRecord]:
        return [
            self._snapshot(record)
            for record in self._status_cache.values()
            if record.status in (SubmissionStatus.PENDING, SubmissionStatus.PROCESSING)
        ]

    def statistics(self) -> dict[str, int]:
        stats = {"total": 0}
        stats.update({status.value: 0 for status in SubmissionStatus})
        for record in self._status_cache.values():
            stats["total"] += 1
            stats[record.status.value] += 1
        return stats

    def clear_old_submissions(self, max_age: float | None = None) -> int:
        limit = self._status_ttl if max_age is None else max_age
        now = self._clock()
        expired = [
            submission_id
            for submission_id, record in self._status_cache.items()
            if record.status.is_terminal and now - record.submitted_at > limit
        ]
        for submission_id in expired:
            del self._status_cache[submission_id]

        # Claims past their TTL already fail the expiry check.
        stale_claims = [
            claim_hash
            for claim_hash, (_, captured_at) in self._used_claims.items()
            if now - captured_at > self._claim_ttl
        ]
        for claim_hash in stale_claims:
            del self._used_claims[claim_hash]
        # The ledger's own duplicate check still covers keys dropped here.
        stale_keys = [key for key, committed_at in self._committed_keys.items() if now - committed_at > self._status_ttl]
        for key in stale_keys:
            del self._committed_keys[key]
        return len(expired)

    async def _validate(
        self, request: SubmissionRequest, submission_id: str, now: float
    ) -> AgentFailure | None:
        claim = request.verification_claim
        if not (request.election_id and request.candidate_id and request.voter_id and request.timestamp):
            return AgentFailure.permanent(ErrorCode.MISSING_FIELDS, "Missing required fields")
        if not request.wallet_secret or claim is None:
            return AgentFailure.permanent(ErrorCode.MISSING_FIELDS, "Missing security credentials")
        if not (claim.claim_hash and claim.device_id and claim.subject_id and claim.captured_at):
            return AgentFailure.permanent(ErrorCode.MISSING_FIELDS, "Missing security credentials")

        if now - request.timestamp > self._request_ttl:
            return AgentFailure.permanent(ErrorCode.REQUEST_EXPIRED, "Submission expired")
        if request.timestamp - now > CLOCK_SKEW_SECONDS:
            return AgentFailure.permanent(ErrorCode.REQUEST_EXPIRED, "Submission is dated in the future")
        claim_age = now - claim.captured_at
        if claim_age > self._claim_ttl:
            return AgentFailure.permanent(
                ErrorCode.CLAIM_EXPIRED, "Biometric verification expired, please verify again"
            )
        if claim_age < -CLOCK_SKEW_SECONDS:
            return AgentFailure.permanent(ErrorCode.INVALID_CLAIM, "Biometric verification is dated in the future")
        if claim.subject_id != request.voter_id:
            return AgentFailure.permanent(ErrorCode.INVALID_CLAIM, "Biometric verification belongs to another voter")
        if claim.election_id and claim.election_id != request.election_id:
            return AgentFailure.permanent(ErrorCode.INVALID_CLAIM, "Biometric verification was made for another election")
        if self._claim_signer is not None and not self._claim_signer.verify(claim):
            return AgentFailure.permanent(ErrorCode.INVALID_CLAIM, "Biometric verification could not be authenticated")

        owner, _ = self._used_claims.get(claim.claim_hash, (None, 0.0))
        if owner is not None and owner != submission_id:
            return AgentFailure.permanent(ErrorCode.CLAIM_REPLAYED, "Biometric verification was already used")
        if request.key in self._committed_keys:
            return AgentFailure.permanent(ErrorCode.ALREADY_VOTED, "User has already voted in this election")
        self._used_claims[claim.claim_hash] = (submission_id, claim.captured_at)

        # Advisory only; the ledger's own check stays authoritative.
        if self._vote_history is not None:
            try:
                voted = await asyncio.to_thread(self._vote_history.has_voted, request.election_id, request.voter_id)
            except BackendError as exc:
                logger.warning("Skipping backend vote history check for %s: %s", submission_id, exc)
                voted = False
            if voted:
                return AgentFailure.permanent(ErrorCode.ALREADY_VOTED, "User has already voted in this election")
        return None

    async def _run(self, record: SubmissionRecord) -> None:
        submission_id = record.submission_id
        try:
            while True:
                try:
                    failure = await self._attempt(record)
                except Exception as exc:  # noqa: BLE001
                    logger.exception("Submission %s crashed during processing", submission_id)
                    failure = AgentFailure.permanent(ErrorCode.LEDGER_UNAVAILABLE, f"Unexpected error: {exc}")
                if failure is None:
                    return
                record.attempt_errors.append(str(failure))
                if not failure.retryable or record.retry_count >= self._max_retries:
                    self._finish(record, SubmissionStatus.FAILED, failure)
                    return

                delay = self._retry_base_delay * (record.retry_count + 1)
                handle = self._scheduler.schedule(submission_id, attempt=record.retry_count + 1, delay=delay)
                self._transition(record, SubmissionStatus.PENDING, retry_count=record.retry_count + 1)
                logger.warning(
                    "Submission %s attempt %d failed (%s), retrying in %.1fs",
                    submission_id,
                    record.retry_count,
                    failure.code.value,
                    delay,
                )
                if not await self._scheduler.wait(handle) or record.status is not SubmissionStatus.PENDING:
                    return
                self._transition(record, SubmissionStatus.PROCESSING)
        finally:
            self._tasks.pop(submission_id, None)

    async def _attempt(self, record: SubmissionRecord) -> AgentFailure | None:
        request = record.request
        if record.tx_hash is None:
            receipt = await self._ledger_agent.commit(request, pending_tx_hash=record.pending_tx_hash)
            if isinstance(receipt, AgentFailure):
                if receipt.code is ErrorCode.ALREADY_VOTED:
                    self._committed_keys[request.key] = self._clock()
                    if receipt.tx_hash:
                        # The vote on the ledger is taken to be this submission's own broadcast.
                        self._transition(
                            record,
                            SubmissionStatus.PROCESSING,
                            tx_hash=receipt.tx_hash,
                            pending_tx_hash=None,
                            ledger_committed=True,
                        )
                elif receipt.tx_hash:
                    self._transition(record, SubmissionStatus.PROCESSING, pending_tx_hash=receipt.tx_hash)
                return receipt
            self._committed_keys[request.key] = self._clock()
            self._transition(
                record,
                SubmissionStatus.PROCESSING,
                tx_hash=receipt.tx_hash,
                block_number=receipt.block_number,
                pending_tx_hash=None,
                ledger_committed=True,
            )

        confirmation = await self._confirm_agent.confirm(request, record.tx_hash)
        if isinstance(confirmation, AgentFailure):
            return confirmation
        self._finish(record, SubmissionStatus.CONFIRMED, confirmation_id=confirmation)
        return None

    def _transition(self, record: SubmissionRecord, status: SubmissionStatus, **changes) -> None:
        if record.status.is_terminal:
            raise RuntimeError(f"Submission {record.submission_id} is already {record.status.value}")
        previous = record.status
        record.status = status
        for name, value in changes.items():
            setattr(record, name, value)
        if previous is not status:
            logger.info("Submission %s: %s -> %s", record.submission_id, previous.value, status.value)

    def _finish(
        self,
        record: SubmissionRecord,
        status: SubmissionStatus,
        failure: AgentFailure | None = None,
        confirmation_id: str | None = None,
    ) -> None:
        changes: dict = {}
        if status is SubmissionStatus.CONFIRMED:
            changes.update(confirmation_id=confirmation_id, confirmed_at=self._clock(), error=None, error_code=None)
        elif failure is not None:
            message = failure.message
            if record.ledger_committed:
                message = (
                    f"Vote recorded on ledger in tx {record.tx_hash} "
                    f"but backend confirmation did not complete: {failure.message}"
                )
                logger.error("Submission %s diverged: %s", record.submission_id, message)
            else:
                logger.warning(
                    "Submission %s ended with %s error %s: %s",
                    record.submission_id,
                    failure.category.value,
                    failure.code.value,
                    message,
                )
            changes.update(error=message, error_code=failure.code)
        self._transition(record, status, **changes)

        self._queue.pop(record.submission_id, None)
        key = record.request.key
        if self._active_keys.get(key) == record.submission_id:
            del self._active_keys[key]

    @staticmethod
    def _snapshot(record: SubmissionRecord) -> SubmissionRecord:
        return dataclasses.replace(record, attempt_errors=list(record.attempt_errors))

    @staticmethod
    def _new_submission_id(now: float) -> str:
        return f"vote_{int(now * 1000):x}_{secrets.token_hex(8)}"
