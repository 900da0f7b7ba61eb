# src/application/broadcaster.py
"""
In-process publish/subscribe channel for "availability changed" events.
Transports (websockets, SSE, push) subscribe here; the engine never holds
connections itself.
"""

import logging
import threading
from dataclasses import asdict, dataclass
from typing import Callable, Dict, List


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventAvailability:
    event_id: int
    title: str
    event_type: str
    total_seats: int
    booked_seats: int
    available_seats: int
    total_tables: int
    booked_tables: int
    available_tables: int
    is_sold_out: bool

    def as_dict(self) -> dict:
        return asdict(self)


Subscriber = Callable[[EventAvailability], None]


class AvailabilityBroadcaster:

    def __init__(self):
        self._subscribers: Dict[int, Subscriber] = {}
        self._next_token = 0
        self._lock = threading.Lock()

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a subscriber; returns a callable that unsubscribes it."""
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscribers[token] = subscriber

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(token, None)

        return unsubscribe

    def publish(self, availability: EventAvailability) -> None:
        with self._lock:
            subscribers: List[Subscriber] = list(self._subscribers.values())

        for subscriber in subscribers:
            try:
                subscriber(availability)
            except Exception:
                logger.exception(
                    "Availability subscriber failed. event_id=%s",
                    availability.event_id,
                )

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)


availability_broadcaster = AvailabilityBroadcaster()
