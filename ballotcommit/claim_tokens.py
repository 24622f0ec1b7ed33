import base64
import hashlib
import hmac
import json
import secrets
from typing import Any

from .models import VerificationClaim

CLAIM_PREFIX = "vote_device_"


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def canonical_json(payload: dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


def new_nonce() -> str:
    return secrets.token_hex(16)


def _claim_payload(
    subject_id: str,
    device_id: str,
    captured_at: float,
    nonce: str,
    election_id: str | None,
) -> dict[str, Any]:
    return {
        "subject": subject_id,
        "device": device_id,
        "election": election_id or "",
        "captured_at": round(float(captured_at), 3),
        "nonce": nonce,
        "type": "device_biometric_voting",
    }


class ClaimSigner:
    """Mints and checks claim hashes with an HMAC key held by the device."""

    def __init__(self, secret: str | bytes) -> None:
        if not secret:
            raise RuntimeError("CLAIM_SIGNING_SECRET is required")
        self._secret = secret.encode("utf-8") if isinstance(secret, str) else secret

    def mint(
        self,
        subject_id: str,
        device_id: str,
        captured_at: float,
        nonce: str,
        election_id: str | None = None,
    ) -> str:
        payload = _claim_payload(subject_id, device_id, captured_at, nonce, election_id)
        digest = hmac.new(self._secret, canonical_json(payload).encode("utf-8"), hashlib.sha256).digest()
        return f"{CLAIM_PREFIX}{_b64url_encode(digest)}"

    def verify(self, claim: VerificationClaim) -> bool:
        if not claim.claim_hash.startswith(CLAIM_PREFIX):
            return False
        expected = self.mint(
            claim.subject_id,
            claim.device_id,
            claim.captured_at,
            claim.nonce,
            claim.election_id,
        )
        return hmac.compare_digest(expected, claim.claim_hash)
