# schoolchat/tests/unit/test_security.py
import datetime

import jwt
import pytest

from schoolchat.config import AppConfig
from schoolchat.infrastructure.security import SecurityService


@pytest.fixture
def security_service():
    config = AppConfig(SECRET_KEY="test_secret", ALGORITHM="HS256")
    return SecurityService(config)


def test_token_round_trip(security_service):
    token, expire = security_service.create_access_token(42)

    assert token
    assert expire > datetime.datetime.now(datetime.timezone.utc)
    assert security_service.decode_access_token(token) == 42


def test_expired_token_is_rejected(security_service):
    token, _ = security_service.create_access_token(
        42, expires_delta=datetime.timedelta(seconds=-1)
    )
    assert security_service.decode_access_token(token) is None


def test_foreign_signature_is_rejected(security_service):
    token = jwt.encode({"sub": "42"}, "another_secret", algorithm="HS256")
    assert security_service.decode_access_token(token) is None


@pytest.mark.parametrize("claims", [{}, {"sub": "not-a-number"}])
def test_unusable_subject_is_rejected(security_service, claims):
    token = jwt.encode(claims, "test_secret", algorithm="HS256")
    assert security_service.decode_access_token(token) is None


def test_garbage_is_rejected(security_service):
    assert security_service.decode_access_token("not.a.token") is None
