from ballotcommit.smart_contract import compile_contract


def test_contract_compiles_with_voter_boxes():
    approval, clear = compile_contract([1, 2, 3])

    assert approval.startswith("#pragma version 8")
    assert '"register_voter"' in approval
    assert '"vote"' in approval
    assert "box_put" in approval
    assert "box_len" in approval
    assert clear.startswith("#pragma version 8")
