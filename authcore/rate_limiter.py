"""
Rate Limiting and Brute Force Protection
"""

import logging
import threading
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from .config import SecurityConfig
from .models import RateLimit
from .utils import Clock

logger = logging.getLogger(__name__)


def rate_limit_key(action: str, identity: str) -> str:
    return f"{action}:{identity}"


class RateLimiter:
    """
    Fixed-window attempt counters keyed by "<action>:<identity>".

    A window is reset wholesale once it has elapsed; individual attempts are
    never pruned.
    """

    def __init__(self, config: SecurityConfig, clock: Clock):
        self.config = config
        self.clock = clock
        self._lock = threading.Lock()
        self._limits: Dict[str, RateLimit] = {}

    def is_limited(self, key: str) -> bool:
        """True iff the key has reached its threshold inside a live window."""
        with self._lock:
            tracker = self._limits.get(key)
            return tracker is not None and tracker.is_limited(self.clock.now())

    def record_attempt(self, key: str, action: Optional[str] = None) -> RateLimit:
        """Start a new window or count one more attempt in the current one."""
        with self._lock:
            return replace(self._record_locked(key, action, self.clock.now()))

    def check_and_record(self, key: str, action: Optional[str] = None) -> Tuple[bool, RateLimit]:
        """
        Atomic is_limited + record_attempt.
        Returns whether the key was limited before this attempt was counted.
        """
        with self._lock:
            now = self.clock.now()
            tracker = self._limits.get(key)
            limited = tracker is not None and tracker.is_limited(now)
            return limited, replace(self._record_locked(key, action, now))

    def reset(self, key: str) -> None:
        """Reset rate limit (e.g., after successful login)"""
        with self._lock:
            self._limits.pop(key, None)

    def get(self, key: str) -> Optional[RateLimit]:
        with self._lock:
            tracker = self._limits.get(key)
            return replace(tracker) if tracker else None

    def _record_locked(self, key: str, action: Optional[str], now: datetime) -> RateLimit:
        action = action or self._action_of(key)
        tracker = self._limits.get(key)
        if tracker is None or tracker.is_expired(now):
            max_attempts, window = self._get_limit_config(action)
            tracker = RateLimit(
                identifier=key,
                action=action,
                attempts=1,
                window_start=now,
                window_duration=window,
                max_attempts=max_attempts,
            )
            self._limits[key] = tracker
        else:
            tracker.attempts += 1

        if tracker.attempts == tracker.max_attempts:
            logger.warning("Rate limit reached for %s until %s", key, tracker.window_end.isoformat())
        return tracker

    @staticmethod
    def _action_of(key: str) -> str:
        return key.split(':', 1)[0]

    def _get_limit_config(self, action: str) -> Tuple[int, timedelta]:
        """Get max attempts and window for an action"""
        configs = {
            'login': (self.config.MAX_LOGIN_ATTEMPTS, self.config.LOGIN_ATTEMPT_WINDOW),
            'password_reset': (
                self.config.MAX_PASSWORD_RESET_REQUESTS,
                self.config.PASSWORD_RESET_RATE_LIMIT_WINDOW,
            ),
        }
        return configs.get(
            action,
            (self.config.DEFAULT_RATE_LIMIT, self.config.DEFAULT_RATE_LIMIT_WINDOW),
        )
