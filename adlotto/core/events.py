# adlotto/core/events.py
from __future__ import annotations
from dataclasses import dataclass
from threading import RLock
from typing import Any, Callable, Dict, Iterator, List, Optional
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Event:
    seq: int
    type: str
    payload: Dict[str, Any]
    time_ms: int


class EventLog:
    """
    Append-only notification log shared by every entity of a deployment.
    Events are never retracted; seq follows commit order.
    """
    def __init__(self):
        self._lock = RLock()
        self._events: List[Event] = []
        self._subscribers: List[Callable[[Event], None]] = []

    def emit(self, event_type: str, time_ms: int, **payload: Any) -> Event:
        with self._lock:
            ev = Event(seq=len(self._events), type=event_type,
                       payload=dict(payload), time_ms=int(time_ms))
            self._events.append(ev)
            subscribers = list(self._subscribers)
        logger.debug("event #%d %s %s", ev.seq, ev.type, ev.payload)
        for cb in subscribers:
            cb(ev)
        return ev

    def subscribe(self, callback: Callable[[Event], None]):
        with self._lock:
            self._subscribers.append(callback)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def __iter__(self) -> Iterator[Event]:
        with self._lock:
            return iter(list(self._events))

    def since(self, seq: int) -> List[Event]:
        with self._lock:
            return self._events[seq:]

    def find(self, event_type: str) -> List[Event]:
        with self._lock:
            return [e for e in self._events if e.type == event_type]

    def latest(self, event_type: str) -> Optional[Event]:
        with self._lock:
            for e in reversed(self._events):
                if e.type == event_type:
                    return e
        return None

    def counts(self) -> Dict[str, int]:
        out: Dict[str, int] = {}
        with self._lock:
            for e in self._events:
                out[e.type] = out.get(e.type, 0) + 1
        return out
