"""
In-memory sliding-window rate limiter for the auth endpoints.

Limits requests per IP across all auth routes and per email on the routes
that send mail. Login throttling per account is separate: it counts
failed_login audit entries in the database.

For production with multiple instances, consider Redis-based rate limiting.
"""

import time
import logging
from collections import defaultdict
from typing import Dict, List, Tuple
from dataclasses import dataclass
from threading import Lock

from healthvault.core.config import get_settings
from healthvault.core.exceptions import RateLimitedError

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    """Configuration for rate limiting."""
    max_requests: int  # Maximum requests allowed
    window_seconds: int  # Time window in seconds


class RateLimiter:
    """
    Thread-safe in-memory rate limiter using sliding window.

    For production with multiple backend instances, replace with Redis.
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        # Store request timestamps per key
        self._requests: Dict[str, List[float]] = defaultdict(list)
        self._lock = Lock()

        self.configs = {
            # Any auth route: 100 requests per 15 minutes per IP
            "auth_ip": RateLimitConfig(max_requests=100, window_seconds=900),
            # OTP send: 5 requests per 15 minutes per email
            "otp_send_email": RateLimitConfig(max_requests=5, window_seconds=900),
            # Password reset: 3 requests per hour per email
            "password_reset_email": RateLimitConfig(max_requests=3, window_seconds=3600),
        }

    def _cleanup_old_requests(self, key: str, window_seconds: int) -> None:
        """Remove timestamps outside the current window."""
        cutoff = time.time() - window_seconds
        self._requests[key] = [ts for ts in self._requests[key] if ts > cutoff]

    def is_allowed(self, limit_type: str, identifier: str) -> Tuple[bool, int]:
        """
        Check if a request is allowed under rate limiting.

        Args:
            limit_type: Type of rate limit (e.g., "auth_ip")
            identifier: Unique identifier (IP address, email, etc.)

        Returns:
            Tuple of (is_allowed: bool, retry_after_seconds: int)
        """
        if not self.enabled:
            return True, 0

        if limit_type not in self.configs:
            logger.warning(f"Unknown rate limit type: {limit_type}")
            return True, 0

        config = self.configs[limit_type]
        key = f"{limit_type}:{identifier}"

        with self._lock:
            now = time.time()
            self._cleanup_old_requests(key, config.window_seconds)

            if len(self._requests[key]) >= config.max_requests:
                oldest_request = min(self._requests[key])
                retry_after = int(oldest_request + config.window_seconds - now) + 1
                return False, max(retry_after, 1)

            # Record this request
            self._requests[key].append(now)
            return True, 0

    def check(self, limit_type: str, identifier: str) -> None:
        """Record a request and raise RateLimitedError if it is over the limit."""
        allowed, retry_after = self.is_allowed(limit_type, identifier)
        if not allowed:
            logger.warning(f"Rate limit exceeded for {limit_type}: {identifier[:20]}...")
            raise RateLimitedError(retry_after)

    def clear(self) -> None:
        with self._lock:
            self._requests.clear()

    def cleanup_all(self) -> int:
        """Remove all expired entries. Call periodically."""
        now = time.time()
        removed = 0

        with self._lock:
            keys_to_remove = []

            for key, timestamps in self._requests.items():
                limit_type = key.split(":")[0]
                if limit_type in self.configs:
                    cutoff = now - self.configs[limit_type].window_seconds
                    new_timestamps = [ts for ts in timestamps if ts > cutoff]
                    if not new_timestamps:
                        keys_to_remove.append(key)
                    else:
                        self._requests[key] = new_timestamps
                        removed += len(timestamps) - len(new_timestamps)

            for key in keys_to_remove:
                del self._requests[key]
                removed += 1

        return removed


# Global rate limiter instance
rate_limiter = RateLimiter(enabled=get_settings().rate_limit_enabled)
