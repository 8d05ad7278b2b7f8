"""
Authentication Module
Complete user authentication with security controls
"""

import logging
import threading
import zlib
from typing import Dict, List, Optional

from .audit import AuditLogger
from .config import SecurityConfig, get_config
from .credentials import CredentialStore
from .crypto import CryptoManager
from .email_service import NotificationDispatcher, Notifier, build_notifier
from .errors import AuthError, AuthErrorKind
from .mfa import MFAService
from .models import (
    AccountStatus,
    AuditAction,
    AuditLog,
    DeviceInfo,
    IssuedSession,
    LOGIN_STATUSES,
    LoginAttempt,
    LoginResult,
    LoginStatus,
    MFADevice,
    MFASetup,
    MFAType,
    RevocationReason,
    Session,
    Severity,
    User,
)
from .password_reset import RESET_REQUESTED_MESSAGE, PasswordResetFlow
from .rate_limiter import RateLimiter, rate_limit_key
from .session import SessionManager
from .tokens import TokenService
from .utils import Clock, SystemClock, TokenGenerator, Validator

logger = logging.getLogger(__name__)

LOGIN_LOCK_STRIPES = 64


class AuthService:
    """
    Complete authentication management with security controls.

    Owns every in-memory store; construct one per process (or per test).
    """

    def __init__(
        self,
        config: Optional[SecurityConfig] = None,
        clock: Optional[Clock] = None,
        notifier: Optional[Notifier] = None,
        generator: Optional[TokenGenerator] = None,
    ):
        self.config = config or get_config()
        self.clock = clock or SystemClock()
        self.generator = generator or TokenGenerator()
        self.crypto = CryptoManager(self.config)

        self.credentials = CredentialStore(self.config, self.crypto, self.clock)
        self.rate_limiter = RateLimiter(self.config, self.clock)
        self.tokens = TokenService(self.config, self.clock, self.generator)
        self.sessions = SessionManager(
            self.config, self.clock, self.tokens, user_lookup=self.credentials.get_user
        )
        self.credentials.add_password_listener(self.sessions.invalidate_all_sessions)
        self.mfa = MFAService(self.config, self.crypto, self.clock, self.generator)
        self.audit = AuditLogger(self.clock)
        self.notifications = NotificationDispatcher(
            notifier or build_notifier(self.config), self.config.NOTIFIER_WORKERS
        )
        self.password_reset = PasswordResetFlow(
            self.config,
            self.clock,
            self.generator,
            self.credentials,
            self.rate_limiter,
            self.notifications,
        )
        # Serializes logins per rate-limit key so concurrent attempts cannot race past the limiter
        self._login_locks = [threading.Lock() for _ in range(LOGIN_LOCK_STRIPES)]

    def __enter__(self) -> "AuthService":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.notifications.shutdown()

    # ==================== REGISTRATION ====================

    def register(
        self,
        email: str,
        username: str,
        password: str,
        profile: Optional[Dict[str, str]] = None,
        ip_address: Optional[str] = None,
    ) -> User:
        """
        Register new user. No session is created; the account starts in
        pending_verification.
        """
        user = self.credentials.register(email, username, password, profile)
        self.audit.log_event(
            AuditAction.ACCOUNT_CREATED,
            user_id=user.id,
            resource=f"user:{user.id}",
            ip_address=ip_address,
        )
        return user

    # ==================== LOGIN / LOGOUT ====================

    def login(
        self,
        email: str,
        password: str,
        device_info: Optional[DeviceInfo] = None,
        mfa_code: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> LoginResult:
        """
        Authenticate user with password and optional MFA.

        Returns a SUCCESS result carrying the new session, or MFA_REQUIRED when
        the account needs a second factor and none was supplied.

        Raises:
            AuthError: RATE_LIMIT_EXCEEDED, INVALID_CREDENTIALS,
                ACCOUNT_SUSPENDED or INVALID_MFA_CODE
        """
        email = Validator.normalize_email(email)
        device_info = device_info or DeviceInfo()
        key = rate_limit_key('login', email)

        with self._login_lock(key):
            if self.rate_limiter.is_limited(key):
                self._record_failed_login(key, email, device_info, ip_address, "Rate limit exceeded")
                raise AuthError(AuthErrorKind.RATE_LIMIT_EXCEEDED)

            user = self.credentials.get_user_by_email(email)
            password_ok = self.credentials.verify_password(email, password)

            if user is None or user.status is AccountStatus.DELETED:
                self._record_failed_login(key, email, device_info, ip_address, "User not found")
                raise AuthError(AuthErrorKind.INVALID_CREDENTIALS)

            if not password_ok:
                self._record_failed_login(key, email, device_info, ip_address, "Invalid password")
                raise AuthError(AuthErrorKind.INVALID_CREDENTIALS)

            if user.status not in LOGIN_STATUSES:
                self._record_failed_login(key, email, device_info, ip_address, "Account suspended")
                raise AuthError(AuthErrorKind.ACCOUNT_SUSPENDED)

            mfa_used = False
            if user.mfa_enabled and self.mfa.has_verified_device(user.id):
                if not mfa_code:
                    # Not an attack signal: nothing is counted
                    return LoginResult(status=LoginStatus.MFA_REQUIRED)
                if not self.mfa.verify_code(user.id, mfa_code):
                    self._record_failed_login(key, email, device_info, ip_address, "Invalid MFA code")
                    raise AuthError(AuthErrorKind.INVALID_MFA_CODE)
                mfa_used = True

            issued = self.sessions.create_session(user, device_info, ip_address)
            user = self.credentials.record_login(user.id) or user

            self.audit.log_attempt(email, True, device_info, ip_address, mfa_used=mfa_used)
            self.rate_limiter.reset(key)

        self.audit.log_event(
            AuditAction.LOGIN,
            user_id=user.id,
            resource=f"session:{issued.session.id}",
            details={"device_type": device_info.device_type, "mfa_used": str(mfa_used).lower()},
            ip_address=ip_address,
        )
        return LoginResult(status=LoginStatus.SUCCESS, session=issued, user=user)

    def logout(self, access_token: str, ip_address: Optional[str] = None) -> None:
        """Deactivate the current session. Idempotent."""
        session = self.sessions.get_session_by_token(access_token)
        if session is None:
            return
        if self.sessions.logout(session.id):
            self.audit.log_event(
                AuditAction.LOGOUT,
                user_id=session.user_id,
                resource=f"session:{session.id}",
                ip_address=ip_address,
            )

    # ==================== SESSIONS ====================

    def refresh_session(self, refresh_token: str) -> IssuedSession:
        return self.sessions.refresh_session(refresh_token)

    def validate_session(self, access_token: str) -> bool:
        return self.sessions.validate_session(access_token)

    def authenticate(self, access_token: str) -> User:
        """Resolve an access token to its user, or raise."""
        if not self.sessions.validate_session(access_token):
            session = self.sessions.get_session_by_token(access_token)
            if session is None:
                raise AuthError(AuthErrorKind.INVALID_TOKEN)
            raise AuthError(AuthErrorKind.SESSION_EXPIRED)
        session = self.sessions.get_session_by_token(access_token)
        return self.credentials.require_user(session.user_id)

    def get_active_sessions(self, user_id: Optional[str] = None) -> List[Session]:
        return self.sessions.list_active_sessions(user_id)

    # ==================== MFA ====================

    def setup_mfa(self, user_id: str, type: MFAType = MFAType.TOTP, name: str = "Authenticator") -> MFASetup:
        user = self.credentials.require_user(user_id)
        return self.mfa.setup(user, type, name)

    def confirm_mfa(self, user_id: str, device_id: str, code: str) -> MFADevice:
        """Verify an enrolled device with its first code and turn MFA on."""
        self.credentials.require_user(user_id)
        device = self.mfa.confirm_device(user_id, device_id, code)
        self.credentials.set_mfa_enabled(user_id, True)
        self.audit.log_event(
            AuditAction.MFA_ENABLED,
            user_id=user_id,
            resource=f"mfa_device:{device.id}",
            details={"type": device.type.value, "name": device.name},
        )
        return device

    def disable_mfa(self, user_id: str) -> int:
        self.credentials.require_user(user_id)
        removed = self.mfa.remove_all(user_id)
        self.credentials.set_mfa_enabled(user_id, False)
        self.audit.log_event(
            AuditAction.MFA_DISABLED,
            user_id=user_id,
            severity=Severity.WARNING,
            details={"devices_removed": str(removed)},
        )
        return removed

    # ==================== PASSWORDS ====================

    def request_password_reset(self, email: str, ip_address: Optional[str] = None) -> str:
        """Always reports success, whether or not the email is registered."""
        user = self.password_reset.request_reset(email, ip_address)
        if user is not None:
            self.audit.log_event(
                AuditAction.PASSWORD_RESET,
                user_id=user.id,
                details={"stage": "requested"},
                ip_address=ip_address,
            )
        return RESET_REQUESTED_MESSAGE

    def redeem_password_reset(
        self,
        token: str,
        new_password: str,
        ip_address: Optional[str] = None
    ) -> None:
        """Reset password with token. Logs out every device."""
        user = self.password_reset.redeem_reset(token, new_password)
        self.audit.log_event(
            AuditAction.PASSWORD_RESET,
            user_id=user.id,
            severity=Severity.WARNING,
            details={"stage": "completed"},
            ip_address=ip_address,
        )

    def change_password(
        self,
        user_id: str,
        current_password: str,
        new_password: str,
        ip_address: Optional[str] = None,
    ) -> None:
        user = self.credentials.require_user(user_id)
        if not self.credentials.verify_password(user.email, current_password):
            raise AuthError(AuthErrorKind.INVALID_CREDENTIALS)
        self.credentials.update_password(user_id, new_password, RevocationReason.PASSWORD_CHANGE)
        self.password_reset.invalidate_user_tokens(user_id)
        self.audit.log_event(
            AuditAction.PASSWORD_CHANGE,
            user_id=user_id,
            severity=Severity.WARNING,
            ip_address=ip_address,
        )

    # ==================== ACCOUNT LIFECYCLE ====================

    def verify_email(self, user_id: str) -> User:
        self.credentials.require_user(user_id)
        user = self.credentials.mark_email_verified(user_id)
        self.audit.log_event(AuditAction.EMAIL_VERIFIED, user_id=user_id)
        return user

    def suspend_user(self, user_id: str, reason: Optional[str] = None) -> User:
        self.credentials.require_user(user_id)
        user = self.credentials.set_status(user_id, AccountStatus.SUSPENDED)
        revoked = self.sessions.invalidate_all_sessions(user_id, RevocationReason.ACCOUNT_SUSPENDED)
        self.password_reset.invalidate_user_tokens(user_id)
        details = {"sessions_revoked": str(revoked)}
        if reason:
            details["reason"] = reason
        self.audit.log_event(
            AuditAction.ACCOUNT_SUSPENDED,
            user_id=user_id,
            severity=Severity.CRITICAL,
            details=details,
        )
        return user

    def delete_user(self, user_id: str) -> User:
        """Soft delete: the record stays, everything hanging off it is invalidated."""
        self.credentials.require_user(user_id)
        user = self.credentials.set_status(user_id, AccountStatus.DELETED)
        revoked = self.sessions.invalidate_all_sessions(user_id, RevocationReason.ACCOUNT_DELETED)
        self.mfa.remove_all(user_id)
        self.password_reset.invalidate_user_tokens(user_id)
        self.audit.log_event(
            AuditAction.ACCOUNT_DELETED,
            user_id=user_id,
            severity=Severity.CRITICAL,
            details={"sessions_revoked": str(revoked)},
        )
        return user

    # ==================== DASHBOARDS ====================

    def get_login_attempts(self, limit: int = 100) -> List[LoginAttempt]:
        return self.audit.query_attempts(limit=limit, newest_first=False)

    def get_audit_logs(self, user_id: Optional[str] = None, limit: int = 100) -> List[AuditLog]:
        return self.audit.query_audit(user_id=user_id, limit=limit, newest_first=False)

    # ==================== HELPERS ====================

    def _login_lock(self, key: str) -> threading.Lock:
        return self._login_locks[zlib.crc32(key.encode()) % LOGIN_LOCK_STRIPES]

    def _record_failed_login(self, key, email, device_info, ip_address, reason):
        """Record failed login attempt and count it against the rate limit"""
        self.rate_limiter.record_attempt(key)
        self.audit.log_attempt(email, False, device_info, ip_address, failure_reason=reason)
