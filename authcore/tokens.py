import logging
from datetime import datetime
from typing import Optional

import jwt

from .config import SecurityConfig
from .models import new_id
from .utils import Clock, TokenGenerator

logger = logging.getLogger(__name__)


class TokenService:
    def __init__(self, config: SecurityConfig, clock: Clock, generator: TokenGenerator):
        self.config = config
        self.clock = clock
        self.generator = generator

    def create_access_token(self, user_id: str, session_id: str, expires_at: datetime) -> str:
        """
        Signed JWT bound to one session.
        Expiry is enforced against the session record, not only the claim.
        """
        payload = {
            "sub": user_id,
            "sid": session_id,
            "jti": new_id(),
            "iat": int(self.clock.now().timestamp()),
            "exp": int(expires_at.timestamp()),
            "iss": self.config.JWT_ISSUER,
            "type": "access",
        }
        return jwt.encode(payload, self.config.JWT_SECRET_KEY, algorithm=self.config.JWT_ALGORITHM)

    def decode_access_token(self, token: str) -> Optional[dict]:
        """Verify signature, issuer and token type. Returns None when any check fails."""
        if not token:
            return None
        try:
            payload = jwt.decode(
                token,
                self.config.JWT_SECRET_KEY,
                algorithms=[self.config.JWT_ALGORITHM],
                issuer=self.config.JWT_ISSUER,
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                    "require": ["sub", "sid", "exp"],
                },
            )
        except jwt.InvalidTokenError as e:
            logger.debug("Rejected access token: %s", e)
            return None

        if payload.get("type") != "access":
            return None
        return payload

    def create_refresh_token(self) -> str:
        """
        Opaque high-entropy string for refresh token.
        NOT a JWT. Only its digest is stored.
        """
        return self.generator.token(self.config.SESSION_TOKEN_BYTES)
