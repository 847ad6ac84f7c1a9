"""Note change notification hook.

External collaborators (a search indexer, a webhook dispatcher) subscribe
here to learn which notes changed. Events are published only after the
transaction that produced them has committed.
"""
import logging
from threading import Lock
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

# callback(note_id, content); content is None when the note was deleted
NoteChangeCallback = Callable[[str, Optional[str]], None]


class NoteChangeNotifier:
    """Fan-out of committed note changes to subscribers."""

    def __init__(self):
        self._subscribers: List[NoteChangeCallback] = []
        self._lock = Lock()

    def subscribe(self, callback: NoteChangeCallback) -> NoteChangeCallback:
        """Register a callback. Returns it so this can be used as a decorator."""
        with self._lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)
        return callback

    def unsubscribe(self, callback: NoteChangeCallback) -> bool:
        with self._lock:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                return False
            return True

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, note_id: str, content: Optional[str]) -> int:
        """Deliver one change to every subscriber.

        The write has already committed, so a failing subscriber is logged
        and skipped. Returns the number of subscribers that succeeded.
        """
        with self._lock:
            subscribers = list(self._subscribers)

        delivered = 0
        for callback in subscribers:
            try:
                callback(note_id, content)
                delivered += 1
            except Exception as e:
                logger.warning(
                    f"Note change subscriber {getattr(callback, '__name__', callback)!r} "
                    f"failed for note {note_id}: {e}",
                    exc_info=True,
                )
        return delivered
