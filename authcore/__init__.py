"""
authcore - authentication and session core.

Registration, credential verification, MFA, session issuance and rotation,
password resets, login rate limiting and audit logging as one in-process service.
"""

import logging

from .auth import AuthService
from .config import (
    DevelopmentConfig,
    ProductionConfig,
    SecurityConfig,
    TestingConfig,
    get_config,
)
from .email_service import LoggingNotifier, Notifier, SMTPNotifier
from .errors import AuthError, AuthErrorKind
from .models import (
    AccountStatus,
    AuditAction,
    DeviceInfo,
    IssuedSession,
    LoginResult,
    LoginStatus,
    MFAType,
    Severity,
    User,
)
from .utils import Clock, SystemClock, TokenGenerator

__version__ = "0.1.0"

__all__ = [
    "AccountStatus",
    "AuditAction",
    "AuthError",
    "AuthErrorKind",
    "AuthService",
    "Clock",
    "DevelopmentConfig",
    "DeviceInfo",
    "IssuedSession",
    "LoggingNotifier",
    "LoginResult",
    "LoginStatus",
    "MFAType",
    "Notifier",
    "ProductionConfig",
    "SMTPNotifier",
    "SecurityConfig",
    "Severity",
    "SystemClock",
    "TestingConfig",
    "TokenGenerator",
    "User",
    "configure_logging",
    "get_config",
]


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
