"""
Coalescing timer for property edits.

Keystroke-level edits are merged per key (element id) and applied once the
key has been quiet for `delay` seconds. The timer never fires on its own:
the owner calls poll() from its event loop, which keeps it deterministic
under a manual clock in tests.

Rules:
- schedule() for a key merges the patch and restarts that key's deadline
- schedule() for a new key first flushes every other pending key, so two
  coalesced patches never race each other
- flush() applies pending patches immediately (blur / commit)
- cancel() drops pending patches without applying them
"""

import logging
import time
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

MIN_DELAY = 0.3
MAX_DELAY = 0.75
DEFAULT_DELAY = 0.5


class CoalescingTimer:
    """Per-key debounce with explicit schedule/flush/cancel/poll."""

    def __init__(
        self,
        on_flush: Callable[[str, dict[str, Any]], None],
        delay: float = DEFAULT_DELAY,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not MIN_DELAY <= delay <= MAX_DELAY:
            raise ValueError(
                f"Coalescing delay must be between {MIN_DELAY} and {MAX_DELAY} seconds, got {delay}"
            )
        self._on_flush = on_flush
        self._delay = delay
        self._clock = clock
        self._pending: dict[str, dict[str, Any]] = {}
        self._deadlines: dict[str, float] = {}

    @property
    def delay(self) -> float:
        return self._delay

    @property
    def pending(self) -> dict[str, dict[str, Any]]:
        """Copy of the patches waiting to be applied, keyed by element id."""
        return {key: dict(patch) for key, patch in self._pending.items()}

    def has_pending(self, key: Optional[str] = None) -> bool:
        if key is None:
            return bool(self._pending)
        return key in self._pending

    def next_deadline(self) -> Optional[float]:
        return min(self._deadlines.values()) if self._deadlines else None

    def schedule(self, key: str, patch: dict[str, Any]) -> None:
        """Merge a patch into the pending entry for key and restart its deadline."""
        others = [k for k in self._pending if k != key]
        for other in others:
            self._fire(other)

        self._pending.setdefault(key, {}).update(patch)
        self._deadlines[key] = self._clock() + self._delay

    def flush(self, key: Optional[str] = None) -> list[str]:
        """Apply pending patches now. Returns the keys that were flushed."""
        keys = [key] if key is not None else list(self._pending)
        flushed = []
        for k in keys:
            if k in self._pending:
                self._fire(k)
                flushed.append(k)
        return flushed

    def cancel(self, key: Optional[str] = None) -> None:
        """Drop pending patches without applying them."""
        if key is None:
            if self._pending:
                logger.debug(f"Cancelled pending edits for {list(self._pending)}")
            self._pending.clear()
            self._deadlines.clear()
            return
        self._pending.pop(key, None)
        self._deadlines.pop(key, None)

    def poll(self) -> int:
        """Apply every pending patch whose deadline has passed."""
        now = self._clock()
        due = [k for k, deadline in self._deadlines.items() if deadline <= now]
        for key in due:
            self._fire(key)
        return len(due)

    def _fire(self, key: str) -> None:
        patch = self._pending.pop(key)
        self._deadlines.pop(key, None)
        self._on_flush(key, patch)
