from __future__ import annotations

import logging
import threading
from typing import Callable, List, Tuple

from lifevault.ledger.types import LedgerEvent
from lifevault.util.structured_log import log_event

Subscriber = Callable[[int, LedgerEvent], None]

_log = logging.getLogger("lifevault.ledger")


class EventLog:
    """Append-only ledger event stream.

    append() is called while the ledger's write lock is held, so sequence
    numbers follow commit order. flush() delivers pending events to
    subscribers outside that lock, one dispatcher at a time, so delivery order
    matches commit order as well.
    """

    def __init__(self) -> None:
        self._events: List[LedgerEvent] = []
        self._subscribers: List[Subscriber] = []
        self._delivered = 0
        self._append_lock = threading.Lock()
        self._dispatch_lock = threading.Lock()

    def append(self, event: LedgerEvent) -> int:
        with self._append_lock:
            self._events.append(event)
            return len(self._events)

    def subscribe(self, fn: Subscriber) -> Callable[[], None]:
        """Register a subscriber; returns an unsubscribe callable.

        Subscribers only see events appended after they subscribed and not yet
        flushed.
        """
        with self._dispatch_lock:
            self._subscribers.append(fn)

        def _unsubscribe() -> None:
            with self._dispatch_lock:
                if fn in self._subscribers:
                    self._subscribers.remove(fn)

        return _unsubscribe

    def flush(self) -> int:
        """Deliver every pending event. Returns the number delivered."""
        delivered = 0
        with self._dispatch_lock:
            while True:
                with self._append_lock:
                    if self._delivered >= len(self._events):
                        break
                    seq = self._delivered + 1
                    event = self._events[self._delivered]
                    self._delivered = seq
                for fn in list(self._subscribers):
                    try:
                        fn(seq, event)
                    except Exception as e:
                        # A failing observer must not block delivery to the others.
                        log_event(
                            _log,
                            "event_subscriber_failed",
                            level=logging.WARNING,
                            seq=seq,
                            kind=event.kind,
                            error=str(e),
                        )
                delivered += 1
        return delivered

    def since(self, seq: int = 0) -> List[Tuple[int, LedgerEvent]]:
        """Events with sequence number > seq, for auditors that poll."""
        with self._append_lock:
            start = max(0, int(seq))
            return [(i + 1, ev) for i, ev in enumerate(self._events[start:], start=start)]

    def __len__(self) -> int:
        with self._append_lock:
            return len(self._events)
