"""
Authentication errors.

Every failure a caller can act on is an AuthError carrying one AuthErrorKind.
Credential failures collapse into INVALID_CREDENTIALS so responses never reveal
whether an account exists.
"""

import enum
from typing import Optional


class AuthErrorKind(str, enum.Enum):
    INVALID_EMAIL = "invalid_email"
    EMAIL_ALREADY_EXISTS = "email_already_exists"
    WEAK_PASSWORD = "weak_password"
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_SUSPENDED = "account_suspended"
    USER_NOT_FOUND = "user_not_found"
    INVALID_MFA_CODE = "invalid_mfa_code"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    INVALID_TOKEN = "invalid_token"
    TOKEN_EXPIRED = "token_expired"
    SESSION_EXPIRED = "session_expired"


MESSAGES = {
    AuthErrorKind.INVALID_EMAIL: "Invalid email format",
    AuthErrorKind.EMAIL_ALREADY_EXISTS: "Email already registered",
    AuthErrorKind.WEAK_PASSWORD: (
        "Password must be at least 8 characters with uppercase, lowercase, and numbers"
    ),
    AuthErrorKind.INVALID_CREDENTIALS: "Invalid email or password",
    AuthErrorKind.ACCOUNT_SUSPENDED: "Account has been suspended",
    AuthErrorKind.USER_NOT_FOUND: "User not found",
    AuthErrorKind.INVALID_MFA_CODE: "Invalid MFA code",
    AuthErrorKind.RATE_LIMIT_EXCEEDED: "Too many attempts. Please try again later",
    AuthErrorKind.INVALID_TOKEN: "Invalid or expired token",
    AuthErrorKind.TOKEN_EXPIRED: "Token has expired",
    AuthErrorKind.SESSION_EXPIRED: "Session has expired",
}

# Used by the HTTP adapter
HTTP_STATUS = {
    AuthErrorKind.INVALID_EMAIL: 400,
    AuthErrorKind.EMAIL_ALREADY_EXISTS: 409,
    AuthErrorKind.WEAK_PASSWORD: 400,
    AuthErrorKind.INVALID_CREDENTIALS: 401,
    AuthErrorKind.ACCOUNT_SUSPENDED: 403,
    AuthErrorKind.USER_NOT_FOUND: 404,
    AuthErrorKind.INVALID_MFA_CODE: 401,
    AuthErrorKind.RATE_LIMIT_EXCEEDED: 429,
    AuthErrorKind.INVALID_TOKEN: 401,
    AuthErrorKind.TOKEN_EXPIRED: 400,
    AuthErrorKind.SESSION_EXPIRED: 401,
}


class AuthError(Exception):
    """Typed authentication failure."""

    def __init__(self, kind: AuthErrorKind, message: Optional[str] = None) -> None:
        self.kind = kind
        self.message = message or MESSAGES[kind]
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]

    def __repr__(self) -> str:
        return f"AuthError({self.kind.value!r}, {self.message!r})"
