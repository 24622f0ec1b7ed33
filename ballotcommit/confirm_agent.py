import asyncio
import logging
from typing import Any, Protocol

from .errors import AgentFailure, BackendUnavailable, ErrorCode, RejectedByBackend
from .models import SubmissionRequest

logger = logging.getLogger(__name__)


class ConfirmationStore(Protocol):
    def post_confirmation(self, payload: dict[str, Any]) -> str | None: ...


def confirmation_payload(request: SubmissionRequest, tx_hash: str) -> dict[str, Any]:
    # The backend deduplicates on (electionId, voterId, txHash).
    return {
        "electionId": request.election_id,
        "candidateId": request.candidate_id,
        "voterId": request.voter_id,
        "txHash": tx_hash,
        "timestamp": request.timestamp,
    }


class BackendConfirmAgent:
    def __init__(self, store: ConfirmationStore) -> None:
        self._store = store

    async def confirm(self, request: SubmissionRequest, tx_hash: str) -> str | AgentFailure:
        payload = confirmation_payload(request, tx_hash)
        try:
            confirmation_id = await asyncio.to_thread(self._store.post_confirmation, payload)
        except BackendUnavailable as exc:
            return AgentFailure.transient(ErrorCode.BACKEND_UNAVAILABLE, f"Backend submission failed: {exc}")
        except RejectedByBackend as exc:
            return AgentFailure.permanent(ErrorCode.REJECTED_BY_BACKEND, f"Backend rejected vote confirmation: {exc}")
        if not confirmation_id:
            return AgentFailure.permanent(ErrorCode.REJECTED_BY_BACKEND, "Backend returned no confirmation id")
        logger.info("Backend confirmed tx %s as %s", tx_hash, confirmation_id)
        return confirmation_id
