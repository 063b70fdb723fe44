"""
Session Policy
==============
Application-level session window, independent of the provider
credential's own expiry.

The SessionRecord is a single store key, ``login_timestamp``, holding
epoch milliseconds as a decimal string.  ``is_expired()`` is a pure read;
``touch()`` and ``clear()`` are the only writers.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from .session_store import BaseSessionStore

logger = logging.getLogger(__name__)


LOGIN_TIMESTAMP_KEY = "login_timestamp"
SESSION_TIMEOUT_MS = 24 * 60 * 60 * 1000


class SessionPolicy:
    """Rolling session window anchored to the last successful check."""

    def __init__(
        self,
        store: BaseSessionStore,
        *,
        window_ms: int = SESSION_TIMEOUT_MS,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            store:     Where the SessionRecord lives.
            window_ms: Maximum idle time between successful checks.
            clock:     Returns seconds since the epoch (``time.time``).
        """
        self.store = store
        self.window_ms = window_ms
        self._clock = clock

    def now_ms(self) -> int:
        return int(round(self._clock() * 1000))

    def login_timestamp(self) -> Optional[int]:
        """Stored timestamp, or None if absent or unparseable."""
        raw = self.store.get(LOGIN_TIMESTAMP_KEY)
        if raw is None:
            return None
        try:
            return int(raw.strip(), 10)
        except (ValueError, AttributeError):
            logger.warning("[SESSION] Unparseable login timestamp — treating session as expired")
            return None

    def is_expired(self) -> bool:
        """True when no usable record exists or the window has lapsed."""
        login_time = self.login_timestamp()
        if login_time is None:
            return True
        return self.now_ms() - login_time > self.window_ms

    def remaining_ms(self) -> int:
        login_time = self.login_timestamp()
        if login_time is None:
            return 0
        return max(0, self.window_ms - (self.now_ms() - login_time))

    def touch(self) -> int:
        """Stamp the record with the current time and return it."""
        now = self.now_ms()
        self.store.set(LOGIN_TIMESTAMP_KEY, str(now))
        return now

    def clear(self) -> None:
        self.store.delete(LOGIN_TIMESTAMP_KEY)
