"""Process-wide fan-out of clipboard events to any number of subscribers.

Publishing never blocks and never fails: each subscriber owns a bounded backlog,
and a subscriber that falls behind loses its oldest pending events. The broadcaster
is independent of the database lock.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, Optional, Set

log = logging.getLogger(__name__)

CLIPBOARD_CREATED = "clipboard:created"
CLIPBOARD_DELETED = "clipboard:deleted"
CLIPBOARD_REORDERED = "clipboard:reordered"

DEFAULT_BACKLOG = 1024


@dataclass(frozen=True)
class ServerEvent:
    name: str
    data: Dict[str, Any]


class Subscription:
    """One subscriber's view of the channel: events published after it attached, in order."""

    def __init__(self, broadcaster: "EventBroadcaster", backlog: int) -> None:
        self._broadcaster = broadcaster
        self._pending: Deque[ServerEvent] = deque()
        self._backlog = backlog
        self._wakeup = asyncio.Event()
        self.closed = False
        self.dropped = 0

    def _deliver(self, event: ServerEvent) -> None:
        if self.closed:
            return
        if len(self._pending) >= self._backlog:
            self._pending.popleft()
            self.dropped += 1
        self._pending.append(event)
        self._wakeup.set()

    def _close(self) -> None:
        self.closed = True
        self._wakeup.set()

    async def next(self, timeout: Optional[float] = None) -> Optional[ServerEvent]:
        """
        Next pending event. Returns None when `timeout` elapses first (heartbeat time).
        Raises StopAsyncIteration once the subscription is closed and drained.
        """
        while not self._pending:
            if self.closed:
                raise StopAsyncIteration
            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout)
            except asyncio.TimeoutError:
                return None
        return self._pending.popleft()

    def unsubscribe(self) -> None:
        """Detach from the broadcaster; pending events are discarded."""
        self._broadcaster._remove(self)
        self._pending.clear()
        self._close()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.unsubscribe()


class EventBroadcaster:
    """Fire-and-forget publish channel. Use from the event loop thread."""

    def __init__(self, backlog: int = DEFAULT_BACKLOG) -> None:
        self._backlog = max(1, backlog)
        self._subscribers: Set[Subscription] = set()
        self.closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        """Attach a new subscriber. On a closed broadcaster the subscription is already ended."""
        sub = Subscription(self, self._backlog)
        if self.closed:
            sub._close()
            return sub
        self._subscribers.add(sub)
        log.debug("Subscriber attached (total=%d)", len(self._subscribers))
        return sub

    def _remove(self, sub: Subscription) -> None:
        self._subscribers.discard(sub)
        log.debug("Subscriber detached (total=%d)", len(self._subscribers))

    def publish(self, name: str, data: Dict[str, Any]) -> None:
        """Queue (name, data) for every current subscriber. No-op without subscribers."""
        if self.closed or not self._subscribers:
            return
        event = ServerEvent(name=name, data=data)
        for sub in list(self._subscribers):
            sub._deliver(event)

    def close(self) -> None:
        """End every subscription; later publishes are ignored."""
        self.closed = True
        subs, self._subscribers = self._subscribers, set()
        for sub in subs:
            sub._close()
        log.info("Event broadcaster closed (%d subscribers ended)", len(subs))
