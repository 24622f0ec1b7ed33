import asyncio

import pytest

from ballotcommit.biometric_gate import VOTING_PROMPT, BiometricGate
from ballotcommit.claim_tokens import ClaimSigner
from ballotcommit.errors import (
    AuthenticationFailed,
    BiometricUnavailable,
    ErrorCode,
    NotEnrolled,
    UserCancelled,
)
from ballotcommit.models import AuthenticationResult
from fakes import SIGNING_SECRET, FakeClock, FakeSensor


class _Registry:
    def __init__(self, enrolled):
        self.enrolled = enrolled

    def is_enrolled(self, subject_id, device_id):
        return (subject_id, device_id) in self.enrolled


def _gate(sensor, clock=None, **kwargs):
    return BiometricGate(
        sensor,
        ClaimSigner(SIGNING_SECRET),
        subject_id="voter-1",
        device_id="device-1",
        clock=clock or FakeClock(),
        **kwargs,
    )


def test_successful_match_mints_a_verifiable_claim():
    clock = FakeClock()
    sensor = FakeSensor()
    markers = {}
    gate = _gate(sensor, clock=clock, marker_store=markers)

    claim = asyncio.run(gate.verify_for_voting("election-1"))

    assert sensor.prompts == [VOTING_PROMPT]
    assert claim.subject_id == "voter-1"
    assert claim.captured_at == clock()
    assert claim.confidence == 0.97
    assert claim.election_id == "election-1"
    assert ClaimSigner(SIGNING_SECRET).verify(claim)
    assert "voter-1" not in claim.claim_hash
    assert gate.last_verification()["captured_at"] == clock()


def test_claims_for_the_same_instant_differ():
    sensor = FakeSensor(results=[AuthenticationResult(success=True)] * 2)
    gate = _gate(sensor)

    async def run():
        return [await gate.verify_for_voting("election-1"), await gate.verify_for_voting("election-1")]

    first, second = asyncio.run(run())

    assert first.claim_hash != second.claim_hash


@pytest.mark.parametrize(
    "sensor, error",
    [
        (FakeSensor(has_hardware=False), BiometricUnavailable),
        (FakeSensor(is_enrolled=False), NotEnrolled),
    ],
)
def test_unavailable_sensor_fails_without_prompting(sensor, error):
    with pytest.raises(error):
        asyncio.run(_gate(sensor).verify_for_voting("election-1"))
    assert sensor.prompts == []


def test_subject_not_enrolled_on_device_fails_without_prompting():
    sensor = FakeSensor()
    gate = _gate(sensor, enrollment=_Registry({("voter-2", "device-1")}))

    with pytest.raises(NotEnrolled):
        asyncio.run(gate.verify_for_voting("election-1"))
    assert sensor.prompts == []


@pytest.mark.parametrize(
    "sensor_error, error, message",
    [
        ("user_cancel", UserCancelled, "Authentication was cancelled"),
        ("system_cancel", UserCancelled, "Authentication was cancelled by system"),
        ("not_enrolled", NotEnrolled, "No biometric data enrolled on device"),
        ("not_available", BiometricUnavailable, "Biometric authentication not available"),
        ("device_locked", AuthenticationFailed, "Device is locked"),
        (None, AuthenticationFailed, "Authentication failed"),
    ],
)
def test_sensor_errors_are_mapped(sensor_error, error, message):
    sensor = FakeSensor(results=[AuthenticationResult(success=False, error=sensor_error)])
    markers = {}

    with pytest.raises(error) as excinfo:
        asyncio.run(_gate(sensor, marker_store=markers).verify_for_voting("election-1"))

    assert excinfo.value.message == message
    assert markers == {}
    assert len(sensor.prompts) == 1


def test_error_codes_follow_exception_type():
    assert UserCancelled("x").code is ErrorCode.USER_CANCELLED
    assert NotEnrolled("x").code is ErrorCode.NOT_ENROLLED
