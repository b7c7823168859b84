from itsdangerous.timed import TimestampSigner

from csrf import generate_csrf_token, validate_csrf_token


def test_generated_token_validates() -> None:
    token = generate_csrf_token()
    assert validate_csrf_token(token)


def test_token_is_bound_to_user() -> None:
    token = generate_csrf_token(user_id=2)
    assert not validate_csrf_token(token, user_id=1)
    assert validate_csrf_token(token, user_id=2)


def test_tampered_or_missing_token_is_rejected() -> None:
    token = generate_csrf_token()
    assert not validate_csrf_token(token[:-2] + "xx")
    assert not validate_csrf_token("")


def test_expired_token_is_rejected(monkeypatch) -> None:
    token = generate_csrf_token()
    real_timestamp = TimestampSigner.get_timestamp

    def three_hours_later(self) -> int:
        return real_timestamp(self) + 3 * 3600

    monkeypatch.setattr(TimestampSigner, "get_timestamp", three_hours_later)

    assert not validate_csrf_token(token, max_age_hours=2)
