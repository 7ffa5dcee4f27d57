"""Fan-out of controller notifications to SSE subscribers."""

from __future__ import annotations

import json
import queue
import threading
from typing import Any, Generator

from loguru import logger


class EventBroker:
    """Thread-safe notifier: every subscriber gets its own queue."""

    def __init__(self, max_queue: int = 1000):
        self._subscribers: list[queue.Queue] = []
        self._lock = threading.Lock()
        self._max_queue = max_queue

    def emit(self, event: str, payload: Any) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for q in subscribers:
            try:
                q.put_nowait((event, payload))
            except queue.Full:
                logger.warning(f"Dropping {event} for a slow subscriber")

    def subscribe(self) -> queue.Queue:
        q: queue.Queue = queue.Queue(maxsize=self._max_queue)
        with self._lock:
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            if q in self._subscribers:
                self._subscribers.remove(q)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def stream(self, keepalive: float = 15.0) -> Generator[str, None, None]:
        """Yield SSE frames until the client goes away."""
        q = self.subscribe()
        try:
            while True:
                try:
                    event, payload = q.get(timeout=keepalive)
                except queue.Empty:
                    yield ": keep-alive\n\n"
                    continue
                yield format_sse(event, payload)
        finally:
            self.unsubscribe(q)


def format_sse(event: str, payload: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n"
