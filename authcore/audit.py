"""
Audit Logging Module

Append-only history of security-relevant actions, plus the login-attempt log.
Recording never raises: a logging failure must not block the operation that
produced it.
"""

import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional

from .models import (
    AuditAction,
    AuditLog,
    DeviceInfo,
    LoginAttempt,
    Severity,
    new_id,
)
from .utils import Clock

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("authcore.audit")

SEVERITY_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.CRITICAL: logging.CRITICAL,
}


class AuditLogger:
    def __init__(self, clock: Clock):
        self.clock = clock
        self._lock = threading.Lock()
        self._entries: List[AuditLog] = []
        self._attempts: List[LoginAttempt] = []

    def record(self, entry: AuditLog) -> None:
        try:
            with self._lock:
                self._entries.append(entry)
            audit_logger.log(
                SEVERITY_LEVELS[entry.severity],
                "%s user=%s resource=%s ip=%s details=%s",
                entry.action.value, entry.user_id, entry.resource, entry.ip_address, entry.details,
            )
        except Exception:
            logger.exception("Failed to record audit entry")

    def record_attempt(self, attempt: LoginAttempt) -> None:
        try:
            with self._lock:
                self._attempts.append(attempt)
            if not attempt.success:
                logger.warning(
                    "Failed login for %s from %s: %s",
                    attempt.email, attempt.ip_address, attempt.failure_reason,
                )
        except Exception:
            logger.exception("Failed to record login attempt")

    def log_event(
        self,
        action: AuditAction,
        user_id: Optional[str] = None,
        severity: Severity = Severity.INFO,
        resource: Optional[str] = None,
        details: Optional[Dict[str, str]] = None,
        ip_address: Optional[str] = None,
    ) -> None:
        """Create audit log entry"""
        try:
            entry = AuditLog(
                id=new_id(),
                action=action,
                timestamp=self.clock.now(),
                severity=severity,
                user_id=user_id,
                resource=resource,
                details=dict(details or {}),
                ip_address=ip_address,
            )
        except Exception:
            logger.exception("Failed to build audit entry for %s", action)
            return
        self.record(entry)

    def log_attempt(
        self,
        email: str,
        success: bool,
        device_info: DeviceInfo,
        ip_address: Optional[str] = None,
        failure_reason: Optional[str] = None,
        mfa_used: bool = False,
    ) -> None:
        try:
            attempt = LoginAttempt(
                id=new_id(),
                email=email,
                success=success,
                ip_address=ip_address,
                device_info=device_info,
                timestamp=self.clock.now(),
                failure_reason=failure_reason,
                mfa_used=mfa_used,
            )
        except Exception:
            logger.exception("Failed to build login attempt for %s", email)
            return
        self.record_attempt(attempt)

    def query_audit(
        self,
        user_id: Optional[str] = None,
        action: Optional[AuditAction] = None,
        severity: Optional[Severity] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
        newest_first: bool = True,
    ) -> List[AuditLog]:
        with self._lock:
            entries = list(self._entries)
        matched = [
            e for e in entries
            if (user_id is None or e.user_id == user_id)
            and (action is None or e.action is action)
            and (severity is None or e.severity is severity)
            and (since is None or e.timestamp >= since)
        ]
        return self._window(matched, limit, newest_first)

    def query_attempts(
        self,
        email: Optional[str] = None,
        success: Optional[bool] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
        newest_first: bool = True,
    ) -> List[LoginAttempt]:
        with self._lock:
            attempts = list(self._attempts)
        matched = [
            a for a in attempts
            if (email is None or a.email == email)
            and (success is None or a.success == success)
            and (since is None or a.timestamp >= since)
        ]
        return self._window(matched, limit, newest_first)

    @staticmethod
    def _window(records: list, limit: int, newest_first: bool) -> list:
        """The most recent `limit` records, in the requested order."""
        if limit <= 0:
            return []
        recent = records[-limit:]
        if newest_first:
            recent.reverse()
        return recent
