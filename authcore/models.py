import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional


def new_id() -> str:
    return str(uuid.uuid4())


class AccountStatus(str, enum.Enum):
    PENDING_VERIFICATION = "pending_verification"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DELETED = "deleted"


# Statuses allowed to authenticate
LOGIN_STATUSES = (AccountStatus.ACTIVE, AccountStatus.PENDING_VERIFICATION)


class MFAType(str, enum.Enum):
    TOTP = "totp"
    SMS = "sms"
    EMAIL = "email"


class RevocationReason(str, enum.Enum):
    LOGOUT = "logout"
    ROTATED = "rotated"
    PASSWORD_CHANGE = "password_change"
    PASSWORD_RESET = "password_reset"
    TOKEN_REUSE = "token_reuse"
    ACCOUNT_SUSPENDED = "account_suspended"
    ACCOUNT_DELETED = "account_deleted"
    REVOKED = "revoked"


class AuditAction(str, enum.Enum):
    LOGIN = "login"
    LOGOUT = "logout"
    PASSWORD_CHANGE = "password_change"
    PASSWORD_RESET = "password_reset"
    MFA_ENABLED = "mfa_enabled"
    MFA_DISABLED = "mfa_disabled"
    EMAIL_VERIFIED = "email_verified"
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_SUSPENDED = "account_suspended"
    ACCOUNT_DELETED = "account_deleted"
    PERMISSION_GRANTED = "permission_granted"
    PERMISSION_REVOKED = "permission_revoked"


class Severity(str, enum.Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class DeviceInfo:
    device_type: str = "web"  # "ios", "macos", "web", ...
    device_name: str = "unknown"
    os_version: str = ""
    app_version: str = ""
    user_agent: Optional[str] = None


@dataclass
class GeoLocation:
    country: str
    country_code: str
    city: Optional[str] = None
    region: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


@dataclass
class User:
    id: str
    email: str
    username: str
    password_hash: str
    created_at: datetime
    updated_at: datetime
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    email_verified: bool = False
    phone_verified: bool = False
    mfa_enabled: bool = False
    status: AccountStatus = AccountStatus.PENDING_VERIFICATION
    last_login_at: Optional[datetime] = None
    password_changed_at: Optional[datetime] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        return self.username


@dataclass
class Session:
    """Server-side session record. Only token digests are kept."""

    id: str
    user_id: str
    family_id: str
    access_token_hash: str
    refresh_token_hash: str
    device_info: DeviceInfo
    created_at: datetime
    expires_at: datetime
    refresh_expires_at: datetime
    last_activity_at: datetime
    ip_address: Optional[str] = None
    location: Optional[GeoLocation] = None
    is_active: bool = True
    revoked_at: Optional[datetime] = None
    revoked_reason: Optional[RevocationReason] = None

    def is_valid(self, now: datetime) -> bool:
        return self.is_active and now < self.expires_at


@dataclass
class IssuedSession:
    """A freshly minted session with the plaintext tokens the caller keeps."""

    session: Session
    access_token: str
    refresh_token: str

    @property
    def expires_at(self) -> datetime:
        return self.session.expires_at


@dataclass
class MFADevice:
    id: str
    user_id: str
    type: MFAType
    name: str
    secret: str  # AES-GCM encrypted base32 secret
    backup_codes: List[str]  # SHA-256 digests of unused codes
    created_at: datetime
    is_verified: bool = False
    last_used_at: Optional[datetime] = None
    last_used_counter: Optional[int] = None


@dataclass
class MFASetup:
    device_id: str
    secret: str
    backup_codes: List[str]
    enrollment_uri: str
    qr_code: str  # base64 PNG


@dataclass(frozen=True)
class LoginAttempt:
    id: str
    email: str
    success: bool
    ip_address: Optional[str]
    device_info: DeviceInfo
    timestamp: datetime
    failure_reason: Optional[str] = None
    mfa_used: bool = False
    location: Optional[GeoLocation] = None


@dataclass(frozen=True)
class AuditLog:
    id: str
    action: AuditAction
    timestamp: datetime
    severity: Severity = Severity.INFO
    user_id: Optional[str] = None
    resource: Optional[str] = None
    details: Dict[str, str] = field(default_factory=dict)
    ip_address: Optional[str] = None


@dataclass
class RateLimit:
    identifier: str
    action: str
    attempts: int
    window_start: datetime
    window_duration: timedelta
    max_attempts: int

    @property
    def window_end(self) -> datetime:
        return self.window_start + self.window_duration

    def is_expired(self, now: datetime) -> bool:
        return now > self.window_end

    def is_limited(self, now: datetime) -> bool:
        return now < self.window_end and self.attempts >= self.max_attempts


@dataclass
class PasswordResetToken:
    id: str
    user_id: str
    token_hash: str
    expires_at: datetime
    created_at: datetime
    used: bool = False
    used_at: Optional[datetime] = None

    def is_valid(self, now: datetime) -> bool:
        return not self.used and now < self.expires_at


class LoginStatus(str, enum.Enum):
    SUCCESS = "success"
    MFA_REQUIRED = "mfa_required"


@dataclass
class LoginResult:
    status: LoginStatus
    session: Optional[IssuedSession] = None
    user: Optional[User] = None

    @property
    def requires_mfa(self) -> bool:
        return self.status is LoginStatus.MFA_REQUIRED
