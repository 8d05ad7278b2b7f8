import hashlib
import hmac
import re
import secrets
from datetime import datetime, timezone
from typing import List, Protocol, Tuple

import pyotp

from .config import SecurityConfig

# Excludes look-alikes (0/O, 1/I/L) so codes survive being read aloud
CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Timezone-aware UTC wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class TokenGenerator:
    """Secure random source for tokens, secrets and backup codes."""

    def token(self, length_bytes: int = 32) -> str:
        """Generates cryptographically secure URL-safe token"""
        return secrets.token_urlsafe(length_bytes)

    def base32_secret(self) -> str:
        return pyotp.random_base32()

    def alphanumeric_code(self, length: int = 8) -> str:
        return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


class Validator:
    def __init__(self, config: SecurityConfig):
        self.config = config
        self._email_re = re.compile(config.EMAIL_PATTERN)

    def validate_email(self, email: str) -> bool:
        return bool(email) and self._email_re.fullmatch(email) is not None

    def validate_password(self, password: str) -> Tuple[bool, List[str]]:
        """
        Enforces the configured policy. By default:
        - Min 8 chars
        - 1 Uppercase, 1 Lowercase, 1 Number
        """
        errors = []
        password = password or ""
        if len(password) < self.config.PASSWORD_MIN_LENGTH:
            errors.append(f"Password must be at least {self.config.PASSWORD_MIN_LENGTH} characters long")
        if self.config.PASSWORD_REQUIRE_UPPERCASE and not re.search(r"[A-Z]", password):
            errors.append("Password must contain at least one uppercase letter")
        if self.config.PASSWORD_REQUIRE_LOWERCASE and not re.search(r"[a-z]", password):
            errors.append("Password must contain at least one lowercase letter")
        if self.config.PASSWORD_REQUIRE_DIGITS and not re.search(r"\d", password):
            errors.append("Password must contain at least one digit")
        if self.config.PASSWORD_REQUIRE_SPECIAL:
            special_pattern = f"[{re.escape(self.config.PASSWORD_SPECIAL_CHARS)}]"
            if not re.search(special_pattern, password):
                errors.append("Password must contain at least one special character")
        return not errors, errors

    @staticmethod
    def normalize_email(email: str) -> str:
        return (email or "").strip().lower()

    @staticmethod
    def hash_token(token: str) -> str:
        """SHA-256 hash for storing tokens safely"""
        return hashlib.sha256(token.encode()).hexdigest()

    @staticmethod
    def constant_time_equals(a: str, b: str) -> bool:
        return hmac.compare_digest(a.encode(), b.encode())
