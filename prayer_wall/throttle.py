"""
In-memory login attempt throttle.

State lives in process memory and is lost on restart. This is a soft
defense against password guessing, not a security boundary. Construct one
LoginThrottle at process start and pass it to AdminService.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from prayer_wall.exceptions import LoginThrottled

MAX_LOGIN_ATTEMPTS = 5
LOGIN_WINDOW = timedelta(minutes=15)


def _utcnow():
    """Return current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class LoginThrottle:
    """Maps a hashed client identity to its recent login attempt timestamps."""

    def __init__(
        self,
        max_attempts: int = MAX_LOGIN_ATTEMPTS,
        window: timedelta = LOGIN_WINDOW,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.max_attempts = max_attempts
        self.window = window
        self._clock = clock or _utcnow
        self._attempts: Dict[str, List[datetime]] = {}
        self._lock = threading.Lock()

    def _recent(self, token: str, now: datetime) -> List[datetime]:
        cutoff = now - self.window
        recent = [t for t in self._attempts.get(token, []) if t > cutoff]
        if recent:
            self._attempts[token] = recent
        else:
            self._attempts.pop(token, None)
        return recent

    def hit(self, token: Optional[str]) -> None:
        """
        Record a login attempt, raising LoginThrottled if the client is over the limit.

        Attempts without a known client token are not throttled.
        """
        if not token:
            return
        with self._lock:
            now = self._clock()
            recent = self._recent(token, now)
            if len(recent) >= self.max_attempts:
                raise LoginThrottled(
                    len(recent),
                    int(self.window.total_seconds()),
                    message=f"Too many login attempts. Try again in {int(self.window.total_seconds()) // 60} minutes.",
                )
            recent.append(now)
            self._attempts[token] = recent

    def clear(self, token: Optional[str]) -> None:
        """Forget attempts for a client (called after a successful login)."""
        if not token:
            return
        with self._lock:
            self._attempts.pop(token, None)

    def attempts(self, token: str) -> int:
        """Number of attempts inside the current window."""
        with self._lock:
            return len(self._recent(token, self._clock()))
