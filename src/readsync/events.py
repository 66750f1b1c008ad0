"""
Simple pub/sub bus between the sync engine and the reader around it.
"""

import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Event = Dict[str, Any]
Handler = Callable[[Event], None]

# reader -> sync
FLUSH_SYNC = "flush-kosync"
# sync -> reader
CONFLICT_DETECTED = "kosync-conflict"
TOAST = "toast"


class EventBus:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: Dict[str, List[Handler]] = defaultdict(list)

    def on(self, topic: str, handler: Handler) -> None:
        with self._lock:
            self._subscribers[topic].append(handler)

    def off(self, topic: str, handler: Handler) -> None:
        with self._lock:
            handlers = self._subscribers.get(topic, [])
            if handler in handlers:
                handlers.remove(handler)

    def dispatch(self, topic: str, event: Event) -> None:
        with self._lock:
            handlers = list(self._subscribers.get(topic, []))
        for handler in handlers:
            try:
                handler(event)
            except Exception as exc:
                logger.error(f"EventBus handler failed for topic '{topic}': {exc}")
