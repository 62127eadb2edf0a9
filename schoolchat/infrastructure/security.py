import datetime
import secrets
from typing import Optional

import jwt
from jwt import ExpiredSignatureError, InvalidTokenError


class SecurityService:
    """Verifies the bearer tokens issued by the identity service.

    Tokens carry the user id in ``sub``; the role is always read from the user
    row so a role change takes effect without re-issuing tokens.
    """

    def __init__(self, config):
        self.config = config

    def create_access_token(
        self, user_id: int, expires_delta: Optional[datetime.timedelta] = None
    ):
        to_encode = {"sub": str(user_id), "nonce": secrets.token_hex(8)}
        if expires_delta:
            expire = datetime.datetime.now(datetime.timezone.utc) + expires_delta
        else:
            expire = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(
                minutes=self.config.ACCESS_TOKEN_EXPIRE_MINUTES
            )
        to_encode.update({"exp": expire})
        encoded_jwt = jwt.encode(
            to_encode, self.config.SECRET_KEY, algorithm=self.config.ALGORITHM
        )
        return encoded_jwt, expire

    def decode_access_token(self, token: str) -> Optional[int]:
        try:
            payload = jwt.decode(
                token, self.config.SECRET_KEY, algorithms=[self.config.ALGORITHM]
            )
        except (ExpiredSignatureError, InvalidTokenError):
            return None
        subject = payload.get("sub")
        if subject is None:
            return None
        try:
            return int(subject)
        except (TypeError, ValueError):
            return None
