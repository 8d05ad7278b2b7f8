"""
Configuration Module for the Authentication Core

This module manages all security configuration parameters.
CRITICAL: Load all secrets from environment variables in production.
"""

import base64
import logging
import os
import secrets
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _secret_from_env(name: str, generate) -> str:
    value = os.getenv(name)
    if value:
        return value
    logger.warning("%s is not set; using a per-process random value", name)
    return generate()


def _random_aes_key() -> str:
    return base64.urlsafe_b64encode(os.urandom(32)).decode()


class SecurityConfig:
    """
    Central configuration class for authentication and session management.
    All security-critical parameters are defined here with secure defaults.
    """

    # ==================== CRYPTOGRAPHIC SETTINGS ====================

    # Random per-process fallbacks: tokens and MFA secrets do not survive a restart
    JWT_SECRET_KEY = _secret_from_env('JWT_SECRET_KEY', lambda: secrets.token_urlsafe(48))
    DATA_ENCRYPTION_KEY = _secret_from_env('DATA_ENCRYPTION_KEY', _random_aes_key)

    # Argon2id parameters - memory-hard KDF resistant to GPU attacks
    ARGON2_TIME_COST = 3  # Number of iterations
    ARGON2_MEMORY_COST = 65536  # 64 MB memory usage
    ARGON2_PARALLELISM = 4  # Number of parallel threads
    ARGON2_HASH_LENGTH = 32  # Output hash length in bytes
    ARGON2_SALT_LENGTH = 16  # Salt length in bytes

    # AES-256-GCM encryption settings
    AES_KEY_SIZE = 32  # 256 bits
    AES_NONCE_SIZE = 12  # 96 bits (recommended for GCM)

    # ==================== PASSWORD POLICY ====================

    PASSWORD_MIN_LENGTH = 8
    PASSWORD_REQUIRE_UPPERCASE = True
    PASSWORD_REQUIRE_LOWERCASE = True
    PASSWORD_REQUIRE_DIGITS = True
    PASSWORD_REQUIRE_SPECIAL = False
    PASSWORD_SPECIAL_CHARS = "!@#$%^&*()_+-=[]{}|;:,.<>?"

    EMAIL_PATTERN = r"[A-Z0-9a-z._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,64}"

    # ==================== SESSION MANAGEMENT ====================

    # Absolute session lifetime; the access token dies with it
    SESSION_DURATION = timedelta(hours=24)

    # Refresh tokens outlive the access window but are single-use
    REFRESH_TOKEN_DURATION = timedelta(days=7)

    # Token entropy - 256 bits minimum
    SESSION_TOKEN_BYTES = 32

    # ==================== JWT TOKEN SETTINGS ====================

    JWT_ALGORITHM = 'HS256'  # Use RS256 with public/private keys in production
    JWT_ISSUER = os.getenv('JWT_ISSUER', 'authcore')

    # Revoke the whole rotation family when a consumed refresh token is replayed
    REFRESH_TOKEN_REUSE_DETECTION = True

    # ==================== BRUTE FORCE PROTECTION ====================

    MAX_LOGIN_ATTEMPTS = 5
    LOGIN_ATTEMPT_WINDOW = timedelta(minutes=15)

    MAX_PASSWORD_RESET_REQUESTS = 3
    PASSWORD_RESET_RATE_LIMIT_WINDOW = timedelta(hours=1)

    # Anything without a dedicated policy
    DEFAULT_RATE_LIMIT = 10
    DEFAULT_RATE_LIMIT_WINDOW = timedelta(hours=1)

    # ==================== MFA SETTINGS ====================

    # TOTP settings (RFC 6238)
    TOTP_INTERVAL = 30  # Time step in seconds
    TOTP_DIGITS = 6  # Number of digits in OTP
    TOTP_VALID_WINDOW = 1  # Steps of clock drift accepted either side
    TOTP_ISSUER = os.getenv('TOTP_ISSUER', 'AuthCore')

    # Backup codes
    MFA_BACKUP_CODE_COUNT = 10
    MFA_BACKUP_CODE_LENGTH = 8

    # ==================== PASSWORD RESET ====================

    PASSWORD_RESET_TOKEN_EXPIRES = timedelta(hours=1)
    PASSWORD_RESET_TOKEN_BYTES = 32  # 256 bits entropy
    PASSWORD_RESET_URL = os.getenv('PASSWORD_RESET_URL', 'https://localhost/reset-password?token={token}')

    # ==================== EMAIL SETTINGS ====================

    # SMTP configuration (load from environment)
    SMTP_HOST = os.getenv('SMTP_HOST', 'localhost')
    SMTP_PORT = int(os.getenv('SMTP_PORT', '587'))
    SMTP_USERNAME = os.getenv('SMTP_USERNAME', '')
    SMTP_PASSWORD = os.getenv('SMTP_PASSWORD', '')
    SMTP_USE_TLS = True
    SMTP_TIMEOUT = 10  # seconds

    EMAIL_FROM = os.getenv('EMAIL_FROM', 'noreply@authcore.local')

    # Background workers for fire-and-forget notifications
    NOTIFIER_WORKERS = 2
    USE_SMTP_NOTIFIER = os.getenv('USE_SMTP_NOTIFIER', 'false').lower() == 'true'

    # ==================== LOGGING & COOKIES ====================

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    COOKIE_SECURE = True  # HTTPS only - disable for local dev
    COOKIE_HTTPONLY = True  # Prevent JavaScript access (XSS protection)
    COOKIE_SAMESITE = 'Strict'  # CSRF protection
    COOKIE_MAX_AGE = int(SESSION_DURATION.total_seconds())


class DevelopmentConfig(SecurityConfig):
    """Development configuration - less strict for testing"""
    COOKIE_SECURE = False  # Allow HTTP in development
    LOG_LEVEL = 'DEBUG'


class ProductionConfig(SecurityConfig):
    """Production configuration - maximum security"""
    COOKIE_SECURE = True
    USE_SMTP_NOTIFIER = True


class TestingConfig(SecurityConfig):
    """Deterministic keys and cheap hashing for the test suite"""
    JWT_SECRET_KEY = 'testing-only-jwt-secret-key-not-for-production-use'
    DATA_ENCRYPTION_KEY = base64.urlsafe_b64encode(b'\x01' * 32).decode()

    ARGON2_TIME_COST = 1
    ARGON2_MEMORY_COST = 8
    ARGON2_PARALLELISM = 1

    COOKIE_SECURE = False
    USE_SMTP_NOTIFIER = False
    NOTIFIER_WORKERS = 1


# Configuration selector based on environment
def get_config() -> SecurityConfig:
    """
    Returns appropriate configuration based on environment.
    Default to production for safety.
    """
    env = os.getenv('AUTHCORE_ENV', 'production')
    if env == 'development':
        return DevelopmentConfig()
    if env == 'testing':
        return TestingConfig()
    return ProductionConfig()
