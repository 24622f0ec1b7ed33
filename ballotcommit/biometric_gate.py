import logging
import time
from collections.abc import Callable, MutableMapping
from typing import Any, Protocol

from .claim_tokens import ClaimSigner, new_nonce
from .errors import AuthenticationFailed, BiometricUnavailable, NotEnrolled, UserCancelled
from .models import AuthenticationResult, SensorAvailability, VerificationClaim

logger = logging.getLogger(__name__)

VOTING_PROMPT = "Verify your identity to cast your vote"
LAST_VERIFICATION_KEY = "last_verification"

_CANCEL_ERRORS = {"user_cancel", "system_cancel", "app_cancel"}
_UNAVAILABLE_ERRORS = {"not_available", "passcode_not_set"}

_ERROR_MESSAGES = {
    "user_cancel": "Authentication was cancelled",
    "system_cancel": "Authentication was cancelled by system",
    "app_cancel": "Authentication was cancelled by the app",
    "device_locked": "Device is locked",
    "lockout": "Too many attempts, biometric sensor is locked",
    "not_available": "Biometric authentication not available",
    "passcode_not_set": "Device passcode is not set",
    "not_enrolled": "No biometric data enrolled on device",
    "unknown": "Unknown authentication error",
}


class SensorGateway(Protocol):
    async def check_availability(self) -> SensorAvailability: ...

    async def authenticate(self, prompt: str) -> AuthenticationResult: ...


class EnrollmentRegistry(Protocol):
    def is_enrolled(self, subject_id: str, device_id: str) -> bool: ...


def describe_sensor_error(error: str | None) -> str:
    if not error:
        return "Authentication failed"
    return _ERROR_MESSAGES.get(error, error)


class BiometricGate:
    def __init__(
        self,
        sensor: SensorGateway,
        signer: ClaimSigner,
        subject_id: str,
        device_id: str,
        enrollment: EnrollmentRegistry | None = None,
        marker_store: MutableMapping[str, Any] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._sensor = sensor
        self._signer = signer
        self._subject_id = subject_id
        self._device_id = device_id
        self._enrollment = enrollment
        self._markers = marker_store
        self._clock = clock

    async def verify_for_voting(self, election_id: str) -> VerificationClaim:
        """
        Prompt the voter once and turn a successful match into a signed claim.

        Fails fast, without prompting, when the sensor is missing or nothing is
        enrolled. Cancellation and mismatch are reported to the caller, which
        decides whether to prompt again.
        """
        availability = await self._sensor.check_availability()
        if not availability.has_hardware:
            raise BiometricUnavailable("Biometric hardware is not available on this device")
        if not availability.is_enrolled:
            raise NotEnrolled("No biometric data enrolled on device")
        if self._enrollment is not None and not self._enrollment.is_enrolled(self._subject_id, self._device_id):
            raise NotEnrolled("Biometric not enrolled for this voter. Please enroll first.")

        result = await self._sensor.authenticate(VOTING_PROMPT)
        if not result.success:
            logger.info("Biometric verification failed for election %s: %s", election_id, result.error)
            raise self._failure_for(result.error)

        captured_at = self._clock()
        nonce = new_nonce()
        claim = VerificationClaim(
            subject_id=self._subject_id,
            device_id=self._device_id,
            captured_at=captured_at,
            claim_hash=self._signer.mint(self._subject_id, self._device_id, captured_at, nonce, election_id),
            confidence=result.confidence,
            election_id=election_id,
            nonce=nonce,
        )
        if self._markers is not None:
            self._markers[LAST_VERIFICATION_KEY] = {
                "subject_id": self._subject_id,
                "device_id": self._device_id,
                "election_id": election_id,
                "captured_at": captured_at,
            }
        logger.info("Biometric verification succeeded for election %s", election_id)
        return claim

    def last_verification(self) -> dict[str, Any] | None:
        if self._markers is None:
            return None
        return self._markers.get(LAST_VERIFICATION_KEY)

    @staticmethod
    def _failure_for(error: str | None) -> Exception:
        message = describe_sensor_error(error)
        if error in _CANCEL_ERRORS:
            return UserCancelled(message)
        if error == "not_enrolled":
            return NotEnrolled(message)
        if error in _UNAVAILABLE_ERRORS:
            return BiometricUnavailable(message)
        return AuthenticationFailed(message)
