"""Single-slot, auto-dismissing user messages.

Only one message is visible at a time: posting replaces whatever is shown.
A message disappears on its own ``duration`` seconds after it was posted, or
earlier when dismissed. Expiry is checked lazily against an injectable clock.
"""

import itertools
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from bookfinder.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    id: int
    message: str
    level: str
    posted_at: float
    expires_at: float

    def to_dict(self) -> dict:
        return {"id": self.id, "message": self.message, "level": self.level}


class NotificationChannel:
    def __init__(self, duration: Optional[float] = None, clock: Callable[[], float] = time.monotonic) -> None:
        self.duration = settings.notification_duration if duration is None else duration
        self._clock = clock
        self._current: Optional[Notification] = None
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def post(self, message: str, level: str = "info") -> Notification:
        now = self._clock()
        notification = Notification(
            id=next(self._ids),
            message=message,
            level=level,
            posted_at=now,
            expires_at=now + self.duration,
        )
        with self._lock:
            self._current = notification
        logger.debug(f"Notification {notification.id}: {message}")
        return notification

    def current(self) -> Optional[Notification]:
        with self._lock:
            if self._current and self._clock() >= self._current.expires_at:
                self._current = None
            return self._current

    def dismiss(self, notification_id: Optional[int] = None) -> bool:
        """Dismiss the visible message. With an id, only that message is dismissed."""
        with self._lock:
            if self._current is None:
                return False
            if notification_id is not None and self._current.id != notification_id:
                return False
            self._current = None
            return True
