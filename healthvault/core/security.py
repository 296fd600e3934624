"""JWT issuing and verification for access and refresh tokens."""

from datetime import datetime, timezone
from typing import Optional
import uuid

from jose import JWTError, jwt

from healthvault.core.config import AuthConfig, get_auth_config
from healthvault.core.exceptions import InvalidTokenError

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


class TokenIssuer:
    """
    Signs and verifies the two token kinds.

    Access and refresh tokens use separate secrets, so a leaked access
    secret cannot be used to mint refresh tokens and vice versa.
    """

    def __init__(self, config: AuthConfig):
        self.config = config

    # ─── JWT Creation ───────────────────────────
    def _create_jwt(self, user_id: str, token_type: str) -> str:
        now = datetime.now(timezone.utc)
        if token_type == ACCESS_TOKEN_TYPE:
            secret, ttl = self.config.access_secret, self.config.access_ttl
        else:
            secret, ttl = self.config.refresh_secret, self.config.refresh_ttl
        payload = {
            "user_id": str(user_id),
            "jti": str(uuid.uuid4()),
            "iat": now,
            "exp": now + ttl,
            "type": token_type,
        }
        return jwt.encode(payload, secret, algorithm=self.config.algorithm)

    def issue_access_token(self, user_id: str) -> str:
        return self._create_jwt(user_id, ACCESS_TOKEN_TYPE)

    def issue_refresh_token(self, user_id: str) -> str:
        return self._create_jwt(user_id, REFRESH_TOKEN_TYPE)

    # ─── Verification ───────────────────────────
    def _verify(self, token: str, secret: str, token_type: str) -> dict:
        try:
            payload = jwt.decode(token, secret, algorithms=[self.config.algorithm])
        except JWTError:
            raise InvalidTokenError()
        if payload.get("type") != token_type or not payload.get("user_id"):
            raise InvalidTokenError()
        return payload

    def verify_access_token(self, token: str) -> dict:
        return self._verify(token, self.config.access_secret, ACCESS_TOKEN_TYPE)

    def verify_refresh_token(self, token: str) -> dict:
        return self._verify(token, self.config.refresh_secret, REFRESH_TOKEN_TYPE)

    def read_refresh_claims(self, token: str) -> Optional[dict]:
        """Claims of a genuinely signed refresh token, expired or not. None if forged or malformed."""
        try:
            return jwt.decode(
                token,
                self.config.refresh_secret,
                algorithms=[self.config.algorithm],
                options={"verify_exp": False},
            )
        except JWTError:
            return None

    @staticmethod
    def expiry_of(payload: dict) -> datetime:
        return datetime.fromtimestamp(payload["exp"], tz=timezone.utc)


_token_issuer: Optional[TokenIssuer] = None


def get_token_issuer() -> TokenIssuer:
    """Get or create the token issuer singleton."""
    global _token_issuer
    if _token_issuer is None:
        _token_issuer = TokenIssuer(get_auth_config())
    return _token_issuer
