import dataclasses

import pytest

from ballotcommit.claim_tokens import CLAIM_PREFIX, ClaimSigner, canonical_json
from fakes import FakeClock, make_claim


def test_canonical_json_is_key_sorted_and_compact():
    assert canonical_json({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'


def test_signed_claim_verifies_and_detects_changes():
    signer = ClaimSigner("secret")
    claim = make_claim(FakeClock(), signer=signer)

    assert claim.claim_hash.startswith(CLAIM_PREFIX)
    assert signer.verify(claim)
    assert not signer.verify(dataclasses.replace(claim, subject_id="voter-2"))
    assert not signer.verify(dataclasses.replace(claim, election_id="election-2"))
    assert not ClaimSigner("other-secret").verify(claim)
    assert not signer.verify(dataclasses.replace(claim, claim_hash="forged"))


def test_signer_requires_a_secret():
    with pytest.raises(RuntimeError):
        ClaimSigner("")
