"""
Session Management Module

- Access tokens are session-bound JWTs, refresh tokens are opaque
- Only SHA-256 digests of either token are kept server-side
- Refresh tokens are single-use: each refresh rotates the session
- Replaying a consumed refresh token revokes the whole session family
- Expiry is lazy: expired records stay in memory and read as invalid
"""

import logging
import threading
from dataclasses import replace
from typing import Callable, Dict, List, Optional

from .config import SecurityConfig
from .errors import AuthError, AuthErrorKind
from .models import (
    AccountStatus,
    DeviceInfo,
    GeoLocation,
    IssuedSession,
    RevocationReason,
    Session,
    User,
    new_id,
)
from .tokens import TokenService
from .utils import Clock, Validator

logger = logging.getLogger(__name__)

UserLookup = Callable[[str], Optional[User]]


class SessionManager:
    def __init__(
        self,
        config: SecurityConfig,
        clock: Clock,
        tokens: TokenService,
        user_lookup: Optional[UserLookup] = None,
    ):
        self.config = config
        self.clock = clock
        self.tokens = tokens
        self.user_lookup = user_lookup
        self._lock = threading.RLock()
        self._sessions: Dict[str, Session] = {}
        self._by_access: Dict[str, str] = {}
        self._by_refresh: Dict[str, str] = {}

    def create_session(
        self,
        user: User,
        device_info: DeviceInfo,
        ip_address: Optional[str] = None,
        location: Optional[GeoLocation] = None,
        family_id: Optional[str] = None,
    ) -> IssuedSession:
        """
        Creates a new active session.
        Returns the record together with the plaintext tokens.
        """
        with self._lock:
            return self._create_locked(user.id, device_info, ip_address, location, family_id)

    def validate_session(self, access_token: str) -> bool:
        """True iff the token belongs to an active, unexpired session."""
        if self.tokens.decode_access_token(access_token) is None:
            return False
        with self._lock:
            session = self._find_by_access(access_token)
            if session is None:
                return False
            now = self.clock.now()
            if not session.is_valid(now):
                return False
            session.last_activity_at = now
            return True

    def get_session_by_token(self, access_token: str) -> Optional[Session]:
        """Lookup regardless of state; callers decide what inactive means."""
        with self._lock:
            session = self._find_by_access(access_token)
            return replace(session) if session else None

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._lock:
            session = self._sessions.get(session_id)
            return replace(session) if session else None

    def refresh_session(self, refresh_token: str) -> IssuedSession:
        """
        Rotate a session: the old one is deactivated and a new one issued
        for the same user and device, atomically.
        """
        with self._lock:
            session_id = self._by_refresh.get(Validator.hash_token(refresh_token or ""))
            session = self._sessions.get(session_id) if session_id else None
            if session is None:
                raise AuthError(AuthErrorKind.INVALID_TOKEN)

            if not session.is_active:
                if (
                    session.revoked_reason is RevocationReason.ROTATED
                    and self.config.REFRESH_TOKEN_REUSE_DETECTION
                ):
                    revoked = self._revoke_family_locked(session.family_id)
                    logger.warning(
                        "Refresh token reuse on session %s; revoked %d session(s) in family %s",
                        session.id, revoked, session.family_id,
                    )
                    raise AuthError(AuthErrorKind.INVALID_TOKEN)
                raise AuthError(AuthErrorKind.SESSION_EXPIRED)

            now = self.clock.now()
            if now >= session.refresh_expires_at:
                raise AuthError(AuthErrorKind.SESSION_EXPIRED)

            if self.user_lookup is not None:
                user = self.user_lookup(session.user_id)
                if user is None or user.status is AccountStatus.DELETED:
                    raise AuthError(AuthErrorKind.USER_NOT_FOUND)

            self._deactivate_locked(session, RevocationReason.ROTATED)
            return self._create_locked(
                session.user_id,
                session.device_info,
                session.ip_address,
                session.location,
                session.family_id,
            )

    def logout(self, session_id: str) -> bool:
        """
        Deactivates exactly that session. Idempotent.
        Returns True if this call changed the session's state.
        """
        return self.revoke_session(session_id, RevocationReason.LOGOUT)

    def revoke_session(
        self,
        session_id: str,
        reason: RevocationReason = RevocationReason.REVOKED
    ) -> bool:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or not session.is_active:
                return False
            self._deactivate_locked(session, reason)
            return True

    def invalidate_all_sessions(
        self,
        user_id: str,
        reason: RevocationReason = RevocationReason.REVOKED
    ) -> int:
        """Password Reset / Password Change / Account Suspension"""
        with self._lock:
            count = 0
            for session in self._sessions.values():
                if session.user_id == user_id and session.is_active:
                    self._deactivate_locked(session, reason)
                    count += 1
        if count:
            logger.info("Invalidated %d session(s) for user %s (%s)", count, user_id, reason.value)
        return count

    def list_active_sessions(self, user_id: Optional[str] = None) -> List[Session]:
        now = self.clock.now()
        with self._lock:
            return [
                replace(s) for s in self._sessions.values()
                if s.is_valid(now) and (user_id is None or s.user_id == user_id)
            ]

    def _create_locked(
        self,
        user_id: str,
        device_info: DeviceInfo,
        ip_address: Optional[str],
        location: Optional[GeoLocation],
        family_id: Optional[str],
    ) -> IssuedSession:
        now = self.clock.now()
        session_id = new_id()
        expires_at = now + self.config.SESSION_DURATION
        access_token = self.tokens.create_access_token(user_id, session_id, expires_at)
        refresh_token = self.tokens.create_refresh_token()

        session = Session(
            id=session_id,
            user_id=user_id,
            family_id=family_id or session_id,
            access_token_hash=Validator.hash_token(access_token),
            refresh_token_hash=Validator.hash_token(refresh_token),
            device_info=device_info,
            created_at=now,
            expires_at=expires_at,
            refresh_expires_at=now + self.config.REFRESH_TOKEN_DURATION,
            last_activity_at=now,
            ip_address=ip_address,
            location=location,
        )
        self._sessions[session.id] = session
        self._by_access[session.access_token_hash] = session.id
        self._by_refresh[session.refresh_token_hash] = session.id
        return IssuedSession(session=replace(session), access_token=access_token, refresh_token=refresh_token)

    def _find_by_access(self, access_token: str) -> Optional[Session]:
        session_id = self._by_access.get(Validator.hash_token(access_token or ""))
        return self._sessions.get(session_id) if session_id else None

    def _deactivate_locked(self, session: Session, reason: RevocationReason) -> None:
        session.is_active = False
        session.revoked_at = self.clock.now()
        session.revoked_reason = reason

    def _revoke_family_locked(self, family_id: str) -> int:
        count = 0
        for session in self._sessions.values():
            if session.family_id == family_id and session.is_active:
                self._deactivate_locked(session, RevocationReason.TOKEN_REUSE)
                count += 1
        return count
