"""
User-facing notifications ("toasts").

Confirmations are rate limited so rapid re-entrant loads or saves don't
produce a storm of identical messages; errors always go through. Every
notification gets an id so clients can dismiss it.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIRM_INTERVAL = 2.5
MAX_ACTIVE = 50


class Variant(str, Enum):
    """Visual variant of a notification."""
    DEFAULT = "default"
    DESTRUCTIVE = "destructive"


@dataclass
class Notification:
    """A dismissible message for the user."""
    title: str
    description: str
    variant: Variant = Variant.DEFAULT
    id: str = field(default_factory=lambda: f"t{uuid.uuid4().hex[:8]}")
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "variant": self.variant.value,
            "created_at": self.created_at.isoformat(),
        }


class Notifier:
    """
    Collects notifications and fans them out to listeners.

    Usage:
        notifier = Notifier()
        notifier.on_notify(lambda n: print(n.title))
        notifier.confirm("Saved", "Model saved successfully.")
    """

    def __init__(
        self,
        confirm_interval: float = DEFAULT_CONFIRM_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._confirm_interval = confirm_interval
        self._clock = clock
        self._last_confirmation: Optional[float] = None
        self._active: list[Notification] = []
        self._listeners: list[Callable[[Notification], None]] = []

    @property
    def active(self) -> list[Notification]:
        """Notifications not yet dismissed, oldest first."""
        return list(self._active)

    def on_notify(self, callback: Callable[[Notification], None]) -> None:
        """Register a callback for every emitted notification."""
        self._listeners.append(callback)

    def notify(self, title: str, description: str, variant: Variant = Variant.DEFAULT) -> Notification:
        """Emit a notification unconditionally."""
        notification = Notification(title=title, description=description, variant=variant)
        self._active.append(notification)
        if len(self._active) > MAX_ACTIVE:
            self._active.pop(0)

        for callback in self._listeners:
            callback(notification)
        return notification

    def confirm(self, title: str, description: str) -> Optional[Notification]:
        """
        Emit a success confirmation unless one was shown too recently.

        Returns the notification, or None if it was suppressed.
        """
        now = self._clock()
        if (
            self._last_confirmation is not None
            and now - self._last_confirmation < self._confirm_interval
        ):
            logger.debug(f"Suppressed confirmation '{title}' (rate limited)")
            return None

        self._last_confirmation = now
        return self.notify(title, description)

    def error(self, title: str, description: str) -> Notification:
        """Emit an error notification; never rate limited."""
        return self.notify(title, description, Variant.DESTRUCTIVE)

    def dismiss(self, notification_id: str) -> bool:
        """Remove a notification. Returns False if it was not active."""
        for i, notification in enumerate(self._active):
            if notification.id == notification_id:
                del self._active[i]
                return True
        return False

    def clear(self) -> None:
        self._active.clear()
