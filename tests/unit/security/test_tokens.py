from app.security.tokens import hash_token, issue_token, verify_token


def test_issued_token_verifies_against_its_hash():
    issued = issue_token()

    assert verify_token(issued.raw_token, issued.token_hash) is True


def test_other_token_does_not_verify():
    first = issue_token()
    second = issue_token()

    assert first.raw_token != second.raw_token
    assert verify_token(second.raw_token, first.token_hash) is False


def test_raw_token_is_256_bits_hex():
    issued = issue_token()

    assert len(issued.raw_token) == 64
    int(issued.raw_token, 16)


def test_hash_is_deterministic_and_not_the_token():
    issued = issue_token()

    assert hash_token(issued.raw_token) == issued.token_hash
    assert issued.token_hash != issued.raw_token
    assert len(issued.token_hash) == 64


def test_missing_values_never_verify():
    issued = issue_token()

    assert verify_token(None, issued.token_hash) is False
    assert verify_token("", issued.token_hash) is False
    assert verify_token(issued.raw_token, None) is False


def test_repr_hides_raw_token():
    issued = issue_token()

    assert issued.raw_token not in repr(issued)
