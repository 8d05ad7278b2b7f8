"""
Credential Store

Authority of record for user accounts: registration, password verification and
password replacement. Everything is held in memory behind one lock.
"""

import logging
import threading
from dataclasses import replace
from typing import Callable, Dict, List, Optional

from .config import SecurityConfig
from .crypto import CryptoManager
from .errors import AuthError, AuthErrorKind
from .models import AccountStatus, RevocationReason, User, new_id
from .utils import Clock, Validator

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ('first_name', 'last_name', 'phone_number')

PasswordListener = Callable[[str, RevocationReason], object]


class CredentialStore:
    """Holds user records and verifies/updates passwords."""

    def __init__(self, config: SecurityConfig, crypto: CryptoManager, clock: Clock):
        self.config = config
        self.crypto = crypto
        self.clock = clock
        self.validator = Validator(config)
        self._lock = threading.RLock()
        self._users: Dict[str, User] = {}
        self._by_email: Dict[str, str] = {}
        self._password_listeners: List[PasswordListener] = []

    def add_password_listener(self, listener: PasswordListener) -> None:
        """Listeners run synchronously after every password change."""
        self._password_listeners.append(listener)

    def register(
        self,
        email: str,
        username: str,
        password: str,
        profile: Optional[Dict[str, str]] = None
    ) -> User:
        """
        Create a user in pending_verification state.

        Raises:
            AuthError: INVALID_EMAIL, EMAIL_ALREADY_EXISTS or WEAK_PASSWORD
        """
        email = (email or "").strip()
        if not self.validator.validate_email(email):
            raise AuthError(AuthErrorKind.INVALID_EMAIL)
        normalized = self.validator.normalize_email(email)

        # Cheap checks first; hashing happens outside the lock
        with self._lock:
            if normalized in self._by_email:
                raise AuthError(AuthErrorKind.EMAIL_ALREADY_EXISTS)

        is_valid, errors = self.validator.validate_password(password)
        if not is_valid:
            raise AuthError(AuthErrorKind.WEAK_PASSWORD, '; '.join(errors))

        password_hash = self.crypto.hash_password(password)
        profile = dict(profile or {})
        now = self.clock.now()
        user = User(
            id=new_id(),
            email=normalized,
            username=username,
            password_hash=password_hash,
            created_at=now,
            updated_at=now,
            first_name=profile.pop('first_name', None),
            last_name=profile.pop('last_name', None),
            phone_number=profile.pop('phone_number', None),
            metadata={str(k): str(v) for k, v in profile.items()},
        )

        with self._lock:
            # Re-check: another registration may have won the race while hashing
            if normalized in self._by_email:
                raise AuthError(AuthErrorKind.EMAIL_ALREADY_EXISTS)
            self._users[user.id] = user
            self._by_email[normalized] = user.id

        logger.info("Registered user %s", user.id)
        return replace(user)

    def verify_password(self, email: str, candidate: str) -> bool:
        """Recomputes the hash with the stored salt and compares."""
        with self._lock:
            user = self._lookup_email(email)
            stored_hash = user.password_hash if user else None

        if stored_hash is None:
            self.crypto.burn_verification(candidate or "")
            return False

        if not self.crypto.verify_password(stored_hash, candidate or ""):
            return False

        if self.crypto.needs_rehash(stored_hash):
            new_hash = self.crypto.hash_password(candidate)
            with self._lock:
                current = self._users.get(user.id)
                if current is not None and current.password_hash == stored_hash:
                    current.password_hash = new_hash
        return True

    def update_password(
        self,
        user_id: str,
        new_password: str,
        reason: RevocationReason = RevocationReason.PASSWORD_CHANGE
    ) -> User:
        """Replace the hash, then invalidate sessions through the listeners."""
        is_valid, errors = self.validator.validate_password(new_password)
        if not is_valid:
            raise AuthError(AuthErrorKind.WEAK_PASSWORD, '; '.join(errors))

        new_hash = self.crypto.hash_password(new_password)
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise AuthError(AuthErrorKind.USER_NOT_FOUND)
            now = self.clock.now()
            user.password_hash = new_hash
            user.updated_at = now
            user.password_changed_at = now
            snapshot = replace(user)

        for listener in self._password_listeners:
            listener(user_id, reason)
        return snapshot

    def get_user(self, user_id: str) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            return replace(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            user = self._lookup_email(email)
            return replace(user) if user else None

    def require_user(self, user_id: str) -> User:
        user = self.get_user(user_id)
        if user is None or user.status is AccountStatus.DELETED:
            raise AuthError(AuthErrorKind.USER_NOT_FOUND)
        return user

    def record_login(self, user_id: str) -> Optional[User]:
        return self._mutate(user_id, last_login_at=self.clock.now())

    def set_mfa_enabled(self, user_id: str, enabled: bool) -> Optional[User]:
        return self._mutate(user_id, mfa_enabled=enabled)

    def set_status(self, user_id: str, status: AccountStatus) -> Optional[User]:
        return self._mutate(user_id, status=status)

    def mark_email_verified(self, user_id: str) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            user.email_verified = True
            if user.status is AccountStatus.PENDING_VERIFICATION:
                user.status = AccountStatus.ACTIVE
            user.updated_at = self.clock.now()
            return replace(user)

    def _mutate(self, user_id: str, **changes) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            for name, value in changes.items():
                setattr(user, name, value)
            user.updated_at = self.clock.now()
            return replace(user)

    def _lookup_email(self, email: str) -> Optional[User]:
        user_id = self._by_email.get(self.validator.normalize_email(email))
        return self._users.get(user_id) if user_id else None
