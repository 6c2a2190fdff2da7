import threading
from collections import defaultdict
from typing import Callable

import structlog

log = structlog.get_logger(__name__)

OBLIGATION_MATERIALIZED = "obligation_materialized"
REMINDER_FIRED = "reminder_fired"
NOTIFICATION_RECEIVED = "notification_received"
NOTIFICATION_RESPONSE = "notification_response"


class EventChannel:
    """In-process publish/subscribe channel.

    Handlers run synchronously on the publishing thread. A failing handler is
    logged and does not stop delivery to the others.
    """

    def __init__(self):
        self._handlers: dict[str, list[Callable[..., None]]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event: str, handler: Callable[..., None]) -> Callable[[], None]:
        """Register handler(**payload); returns an unsubscribe callable."""
        with self._lock:
            self._handlers[event].append(handler)

        def unsubscribe():
            with self._lock:
                if handler in self._handlers[event]:
                    self._handlers[event].remove(handler)

        return unsubscribe

    def publish(self, event: str, **payload) -> int:
        """Deliver payload to every handler; returns how many succeeded."""
        with self._lock:
            handlers = list(self._handlers[event])
        delivered = 0
        for handler in handlers:
            try:
                handler(**payload)
                delivered += 1
            except Exception:
                log.exception("event_handler_failed", channel_event=event)
        return delivered
