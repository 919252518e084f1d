import time

import jwt
import pytest
from fastapi import HTTPException

from shared.auth_middleware import JWT_ALGORITHM, JWT_SECRET_KEY, verify_token


def encode(payload: dict, secret: str = JWT_SECRET_KEY) -> str:
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def test_valid_token(faker):
    email = faker.email()
    token = encode(
        {
            "sub": "user-1",
            "email": email.upper(),
            "user_metadata": {"full_name": "Ana Souza"},
            "exp": int(time.time()) + 60,
        }
    )

    data = verify_token(token)

    assert data.subject == "user-1"
    assert data.email == email.lower()
    assert data.name == "Ana Souza"


def test_email_from_user_metadata():
    token = encode({"sub": "user-2", "user_metadata": {"email": "meta@example.com"}})
    assert verify_token(token).email == "meta@example.com"


@pytest.mark.parametrize(
    "token",
    [
        encode({"sub": "u", "email": "a@b.c", "exp": int(time.time()) - 10}),
        encode({"sub": "u", "email": "a@b.c"}, secret="another-secret-of-sufficient-length!!"),
        encode({"email": "a@b.c"}),
        encode({"sub": "u"}),
        "not-a-jwt",
    ],
)
def test_rejected_tokens(token):
    with pytest.raises(HTTPException) as exc_info:
        verify_token(token)
    assert exc_info.value.status_code == 401


def test_dev_token_is_accepted():
    from scripts.generate_dev_token import generate_dev_token

    token = generate_dev_token("Dev@Example.com", name="Dev", secret=JWT_SECRET_KEY)

    data = verify_token(token)
    assert data.email == "dev@example.com"
    assert data.name == "Dev"
