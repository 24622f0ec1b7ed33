import base64
import logging
from typing import Any

from algosdk import account, encoding, mnemonic, transaction
from algosdk.error import AlgodHTTPError
from algosdk.v2client import algod

from .models import ElectionInfo, LedgerIdentity, TxResult

logger = logging.getLogger(__name__)

REGISTER_METHOD = b"register_voter"
VOTE_METHOD = b"vote"
REGISTRATION_BOX_PREFIX = b"reg_"
VOTER_BOX_PREFIX = b"voter_"

_PERMANENT_REJECTIONS = ("logic eval", "rejected by logic", "overspend", "already in ledger")


def _is_permanent_rejection(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _PERMANENT_REJECTIONS)


class AlgorandLedgerClient:
    """
    Ledger client for the election application deployed on Algorand.

    The contract address handed around by the pipeline is the application id.
    Voter state lives in boxes keyed by the voter's public key, written by the
    program in smart_contract.py.
    """

    def __init__(self, algod_client: algod.AlgodClient, timeout_rounds: int = 12) -> None:
        self.algod = algod_client
        self.timeout_rounds = timeout_rounds
        self._private_key: str | None = None
        self._address: str | None = None

    @classmethod
    def from_settings(cls, settings) -> "AlgorandLedgerClient":
        if not settings.algod_address:
            raise RuntimeError("ALGORAND_ALGOD_ADDRESS is required")
        headers = {"X-API-Key": settings.algod_token} if settings.algod_token else {}
        client = algod.AlgodClient(settings.algod_token, settings.algod_address, headers=headers)
        return cls(client, timeout_rounds=settings.tx_timeout_rounds)

    @staticmethod
    def _app_id(contract: str | int) -> int:
        app_id = int(contract)
        if app_id <= 0:
            raise ValueError(f"Invalid election application id: {contract}")
        return app_id

    @staticmethod
    def _box_key(prefix: bytes, address: str) -> bytes:
        return prefix + encoding.decode_address(address)

    @staticmethod
    def _u64(value: int) -> bytes:
        return int(value).to_bytes(8, "big")

    def connect_identity(self, secret: str) -> LedgerIdentity:
        """Load the voter's signing key from its 25-word mnemonic."""
        try:
            private_key = mnemonic.to_private_key(secret)
            address = account.address_from_private_key(private_key)
        except Exception as exc:  # noqa: BLE001
            raise ValueError("Invalid wallet mnemonic") from exc
        self._private_key = private_key
        self._address = address
        return LedgerIdentity(address=address)

    def _require_identity(self) -> tuple[str, str]:
        if self._private_key is None or self._address is None:
            raise RuntimeError("Ledger identity not connected")
        return self._private_key, self._address

    def _box_exists(self, app_id: int, box_name: bytes) -> bool:
        try:
            self.algod.application_box_by_name(app_id, box_name)
        except AlgodHTTPError as exc:
            if exc.code == 404:
                return False
            raise
        return True

    def is_registered(self, contract: str | int, address: str) -> bool:
        return self._box_exists(self._app_id(contract), self._box_key(REGISTRATION_BOX_PREFIX, address))

    def has_committed(self, contract: str | int, address: str) -> bool:
        return self._box_exists(self._app_id(contract), self._box_key(VOTER_BOX_PREFIX, address))

    def wait_for_confirmation(self, tx_id: str, timeout_rounds: int | None = None) -> dict[str, Any]:
        timeout = timeout_rounds if timeout_rounds is not None else self.timeout_rounds
        start_round = self.algod.status()["last-round"] + 1
        current_round = start_round
        while current_round < start_round + timeout:
            pending_txn = self.algod.pending_transaction_info(tx_id)
            confirmed_round = pending_txn.get("confirmed-round", 0)
            if confirmed_round > 0:
                return pending_txn
            pool_error = pending_txn.get("pool-error")
            if pool_error:
                raise RuntimeError(f"Transaction rejected: {pool_error}")
            self.algod.status_after_block(current_round)
            current_round += 1
        raise TimeoutError(f"Transaction not confirmed after {timeout} rounds")

    def _submit_app_call(self, app_id: int, app_args: list[bytes], boxes: list[tuple[int, bytes]]) -> TxResult:
        private_key, sender = self._require_identity()
        try:
            sp = self.algod.suggested_params()
            txn = transaction.ApplicationNoOpTxn(
                sender=sender,
                sp=sp,
                index=app_id,
                app_args=app_args,
                boxes=boxes,
            )
            tx_id = self.algod.send_transaction(txn.sign(private_key))
        except (AlgodHTTPError, OSError) as exc:
            message = str(exc)
            return TxResult(success=False, error=message, retryable=not _is_permanent_rejection(message))

        try:
            pending = self.wait_for_confirmation(tx_id)
        except TimeoutError as exc:
            return TxResult(success=False, tx_hash=tx_id, error=str(exc), retryable=True)
        except RuntimeError as exc:
            return TxResult(success=False, tx_hash=tx_id, error=str(exc), retryable=False)
        except (AlgodHTTPError, OSError) as exc:
            return TxResult(success=False, tx_hash=tx_id, error=str(exc), retryable=True)

        confirmed_round = int(pending.get("confirmed-round", 0))
        logger.info("Transaction %s confirmed in round %s", tx_id, confirmed_round)
        return TxResult(success=True, tx_hash=tx_id, block_number=confirmed_round)

    def transaction_status(self, tx_id: str) -> TxResult:
        """Look up a transaction broadcast earlier whose inclusion was never seen."""
        try:
            pending_txn = self.algod.pending_transaction_info(tx_id)
        except AlgodHTTPError as exc:
            if exc.code == 404:
                return TxResult(success=False, tx_hash=tx_id, error="Transaction not found", retryable=True)
            raise
        confirmed_round = int(pending_txn.get("confirmed-round", 0))
        if confirmed_round > 0:
            return TxResult(success=True, tx_hash=tx_id, block_number=confirmed_round)
        pool_error = pending_txn.get("pool-error")
        if pool_error:
            return TxResult(success=False, tx_hash=tx_id, error=f"Transaction rejected: {pool_error}", retryable=False)
        return TxResult(success=False, tx_hash=tx_id, error="Transaction still pending", retryable=True)

    def register(self, contract: str | int) -> TxResult:
        _, sender = self._require_identity()
        app_id = self._app_id(contract)
        boxes = [(app_id, self._box_key(REGISTRATION_BOX_PREFIX, sender))]
        return self._submit_app_call(app_id, [REGISTER_METHOD], boxes)

    def commit_vote(self, contract: str | int, candidate_id: str | int, address: str) -> TxResult:
        _, sender = self._require_identity()
        if address != sender:
            return TxResult(success=False, error="Vote address does not match connected identity", retryable=False)
        try:
            candidate = int(candidate_id)
        except (TypeError, ValueError):
            return TxResult(success=False, error="Invalid candidate ID", retryable=False)
        app_id = self._app_id(contract)
        boxes = [
            (app_id, self._box_key(REGISTRATION_BOX_PREFIX, sender)),
            (app_id, self._box_key(VOTER_BOX_PREFIX, sender)),
        ]
        return self._submit_app_call(app_id, [VOTE_METHOD, self._u64(candidate)], boxes)

    def _decode_global_state(self, app_state: list[dict[str, Any]]) -> dict[bytes, int | bytes]:
        decoded: dict[bytes, int | bytes] = {}
        for entry in app_state:
            key = base64.b64decode(entry["key"])
            value = entry["value"]
            if value["type"] == 2:
                decoded[key] = int(value.get("uint", 0))
            elif value["type"] == 1:
                decoded[key] = base64.b64decode(value.get("bytes", ""))
        return decoded

    def _chain_timestamp(self) -> int:
        last_round = self.algod.status()["last-round"]
        block_info = self.algod.block_info(last_round)
        return int(block_info["block"]["ts"])

    def get_election_info(self, contract: str | int) -> ElectionInfo:
        app_info = self.algod.application_info(self._app_id(contract))
        decoded = self._decode_global_state(app_info["params"].get("global-state", []))
        title = decoded.get(b"title", b"")
        start_time = decoded.get(b"start", 0)
        end_time = decoded.get(b"deadline", 0)
        finalized = decoded.get(b"finalized", 0)
        start_time = start_time if isinstance(start_time, int) else 0
        end_time = end_time if isinstance(end_time, int) else 0
        is_finalized = isinstance(finalized, int) and finalized > 0
        now = self._chain_timestamp()
        return ElectionInfo(
            title=title.decode("utf-8") if isinstance(title, bytes) else str(title),
            start_time=start_time,
            end_time=end_time,
            is_active=start_time <= now < end_time and not is_finalized,
            is_finalized=is_finalized,
        )
