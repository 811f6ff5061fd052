# ==============================================================================
# REALTIME CHANGE FEED
# ==============================================================================
# In-process publish/subscribe for table changes. Table repositories publish
# INSERT / UPDATE / DELETE events; admin screens subscribe (directly or via
# an SSE stream backed by a Queue) and refetch when something changes.
#
# Delivery is best effort: no ordering or exactly-once guarantee, and a full
# subscriber queue drops the event.
# ==============================================================================

import logging
import threading
import uuid
from queue import Queue, Full
from typing import Any, Callable, Dict, Iterable, Optional

logger = logging.getLogger(__name__)

EVENT_INSERT = 'INSERT'
EVENT_UPDATE = 'UPDATE'
EVENT_DELETE = 'DELETE'
ALL_EVENTS = frozenset([EVENT_INSERT, EVENT_UPDATE, EVENT_DELETE])


class ChangeFeed:
    """
    Registry of table subscriptions.

    Usage:
        feed = ChangeFeed()
        sub_id = feed.subscribe('orders', on_change)
        ...
        feed.unsubscribe(sub_id)
    """

    def __init__(self):
        self._subscribers: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def subscribe(
        self,
        table: str,
        callback: Callable[[Dict[str, Any]], None],
        events: Optional[Iterable[str]] = None
    ) -> str:
        """
        Register a callback for changes on a table.

        Args:
            table: Table name
            callback: Called with the event dict {table, type, new, old}
            events: Subset of INSERT/UPDATE/DELETE (all when None)

        Returns:
            Subscription id for unsubscribe()
        """
        sub_id = uuid.uuid4().hex
        wanted = frozenset(e.upper() for e in events) if events else ALL_EVENTS
        with self._lock:
            self._subscribers[sub_id] = {'table': table, 'callback': callback, 'events': wanted}
        return sub_id

    def unsubscribe(self, sub_id: str) -> bool:
        with self._lock:
            return self._subscribers.pop(sub_id, None) is not None

    def subscriber_count(self, table: str = None) -> int:
        with self._lock:
            if table is None:
                return len(self._subscribers)
            return sum(1 for s in self._subscribers.values() if s['table'] == table)

    def publish(self, table: str, event_type: str, new: Dict[str, Any] = None, old: Dict[str, Any] = None) -> int:
        """
        Deliver an event to every matching subscriber.

        Returns:
            Number of callbacks invoked
        """
        event = {'table': table, 'type': event_type, 'new': new, 'old': old}
        with self._lock:
            targets = [
                s['callback'] for s in self._subscribers.values()
                if s['table'] == table and event_type in s['events']
            ]

        delivered = 0
        for callback in targets:
            try:
                callback(event)
                delivered += 1
            except Exception:
                # Subscriber errors never fail the write
                logger.exception("Realtime subscriber failed for %s %s", table, event_type)
        return delivered

    def open_stream(self, table: str, maxsize: int = 100):
        """
        Subscribe a bounded Queue to a table (used by SSE endpoints).

        Returns:
            Tuple (subscription_id, queue)
        """
        queue: Queue = Queue(maxsize=maxsize)

        def _enqueue(event):
            try:
                queue.put_nowait(event)
            except Full:
                logger.warning("Realtime queue full for %s, dropping %s event", table, event['type'])

        return self.subscribe(table, _enqueue), queue
