"""
Email Service for Authentication Notifications

Notifications are fire-and-forget: the dispatcher hands them to a worker pool
and the caller never waits for, or learns about, delivery.
"""

import logging
import smtplib
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Callable, Optional, Protocol, Set

from .config import SecurityConfig

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def send_password_reset(self, email: str, token: str) -> None: ...


class SMTPNotifier:
    """Delivers reset links over SMTP."""

    def __init__(self, config: SecurityConfig):
        self.config = config

    def send_email(self, to_email: str, subject: str, body_html: str) -> None:
        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = self.config.EMAIL_FROM
        msg['To'] = to_email
        msg.attach(MIMEText(body_html, 'html'))

        with smtplib.SMTP(self.config.SMTP_HOST, self.config.SMTP_PORT, timeout=self.config.SMTP_TIMEOUT) as server:
            if self.config.SMTP_USE_TLS:
                server.starttls()
            if self.config.SMTP_USERNAME and self.config.SMTP_PASSWORD:
                server.login(self.config.SMTP_USERNAME, self.config.SMTP_PASSWORD)
            server.send_message(msg)

    def send_password_reset(self, email: str, token: str) -> None:
        """Send password reset email"""
        reset_url = self.config.PASSWORD_RESET_URL.format(token=token)
        minutes = int(self.config.PASSWORD_RESET_TOKEN_EXPIRES.total_seconds() // 60)

        body = f"""
        <h2>Password Reset Request</h2>
        <p>Click the link below to reset your password:</p>
        <p><a href="{reset_url}">Reset Password</a></p>
        <p>This link expires in {minutes} minutes.</p>
        <p>If you didn't request this, please ignore this email.</p>
        """

        self.send_email(email, "Reset Your Password", body)


class LoggingNotifier:
    """Development notifier: records that a reset was issued, never the token."""

    def send_password_reset(self, email: str, token: str) -> None:
        logger.info("Password reset issued for %s", email)


class NotificationDispatcher:
    """Runs notifier calls on a background pool; failures are logged, never raised."""

    def __init__(self, notifier: Notifier, max_workers: int = 2):
        self.notifier = notifier
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="authcore-notify")
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def dispatch_password_reset(self, email: str, token: str) -> None:
        self._submit(self.notifier.send_password_reset, email, token)

    def drain(self, timeout: Optional[float] = None) -> None:
        """Block until queued notifications have finished."""
        with self._lock:
            pending = list(self._pending)
        wait(pending, timeout=timeout)

    def shutdown(self, wait_for_pending: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_pending)

    def _submit(self, fn: Callable, *args) -> None:
        try:
            future = self._executor.submit(fn, *args)
        except RuntimeError:
            logger.error("Notification dropped: dispatcher is shut down")
            return
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._on_done)

    def _on_done(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
        exc = future.exception()
        if exc is not None:
            logger.error("Notification delivery failed: %s", exc)


def build_notifier(config: SecurityConfig) -> Notifier:
    if config.USE_SMTP_NOTIFIER:
        return SMTPNotifier(config)
    return LoggingNotifier()
