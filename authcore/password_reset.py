"""
Password-Reset Flow

Requests always report the same outcome, whether or not the address belongs
to an account. Tokens are single-use, time-limited and stored as digests.
"""

import logging
import threading
from dataclasses import replace
from typing import Dict, List, Optional

from .config import SecurityConfig
from .credentials import CredentialStore
from .email_service import NotificationDispatcher
from .errors import AuthError, AuthErrorKind
from .models import AccountStatus, PasswordResetToken, RevocationReason, User, new_id
from .rate_limiter import RateLimiter, rate_limit_key
from .utils import Clock, TokenGenerator, Validator

logger = logging.getLogger(__name__)

RESET_REQUESTED_MESSAGE = "If the email exists, a reset link has been sent"


class PasswordResetFlow:
    def __init__(
        self,
        config: SecurityConfig,
        clock: Clock,
        generator: TokenGenerator,
        credentials: CredentialStore,
        rate_limiter: RateLimiter,
        dispatcher: NotificationDispatcher,
    ):
        self.config = config
        self.clock = clock
        self.generator = generator
        self.credentials = credentials
        self.rate_limiter = rate_limiter
        self.dispatcher = dispatcher
        self._lock = threading.Lock()
        self._tokens: Dict[str, PasswordResetToken] = {}

    def request_reset(self, email: str, ip_address: Optional[str] = None) -> Optional[User]:
        """
        Issue a reset token if the account exists.

        Both paths generate a token and count against the rate limit, so the
        caller-visible behaviour is identical. Returns the user the token was
        issued for (for auditing), never to be surfaced to the requester.
        """
        normalized = Validator.normalize_email(email)
        key = rate_limit_key('password_reset', normalized)
        limited, _ = self.rate_limiter.check_and_record(key)

        token = self.generator.token(self.config.PASSWORD_RESET_TOKEN_BYTES)
        user = self.credentials.get_user_by_email(normalized)

        if limited:
            logger.warning("Password reset rate limit exceeded for %s from %s", normalized, ip_address)
            return None
        if user is None or user.status is AccountStatus.DELETED:
            return None

        now = self.clock.now()
        record = PasswordResetToken(
            id=new_id(),
            user_id=user.id,
            token_hash=Validator.hash_token(token),
            expires_at=now + self.config.PASSWORD_RESET_TOKEN_EXPIRES,
            created_at=now,
        )
        with self._lock:
            self._tokens[record.token_hash] = record

        self.dispatcher.dispatch_password_reset(user.email, token)
        return user

    def redeem_reset(self, token: str, new_password: str) -> User:
        """
        Consume a reset token and set the new password.
        Every session of the user is invalidated before this returns.
        """
        token_hash = Validator.hash_token(token or "")
        with self._lock:
            record = self._tokens.get(token_hash)
            if record is None:
                raise AuthError(AuthErrorKind.INVALID_TOKEN)
            if not record.is_valid(self.clock.now()):
                raise AuthError(AuthErrorKind.TOKEN_EXPIRED)
            user_id = record.user_id

        is_valid, errors = self.credentials.validator.validate_password(new_password)
        if not is_valid:
            raise AuthError(AuthErrorKind.WEAK_PASSWORD, '; '.join(errors))

        user = self.credentials.get_user(user_id)
        if user is None or user.status is AccountStatus.DELETED:
            raise AuthError(AuthErrorKind.USER_NOT_FOUND)

        # Claim atomically: a concurrent redemption of the same token loses here
        with self._lock:
            now = self.clock.now()
            if not record.is_valid(now):
                raise AuthError(AuthErrorKind.TOKEN_EXPIRED)
            record.used = True
            record.used_at = now

        updated = self.credentials.update_password(user_id, new_password, RevocationReason.PASSWORD_RESET)
        self.invalidate_user_tokens(user_id)
        return updated

    def invalidate_user_tokens(self, user_id: str) -> int:
        """Retire every outstanding token for a user."""
        now = self.clock.now()
        count = 0
        with self._lock:
            for record in self._tokens.values():
                if record.user_id == user_id and not record.used:
                    record.used = True
                    record.used_at = now
                    count += 1
        return count

    def list_tokens(self, user_id: str) -> List[PasswordResetToken]:
        with self._lock:
            return [replace(t) for t in self._tokens.values() if t.user_id == user_id]
