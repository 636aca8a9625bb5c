"""In-process fan-out of live visits to authenticated admin connections.

Each connection gets a Subscriber with its own bounded asyncio.Queue
(outbox). The transport adapter drains the outbox with a single task, so a
member sees events in publish order. Publishing never waits on a slow
member: when an outbox is full the event is dropped for that member only.
There is no backlog or replay; a reconnecting admin reloads via the query
API.
"""

from __future__ import annotations

import asyncio
import enum
import itertools
from dataclasses import dataclass, field
from typing import Callable, TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from beacon.core.models import VisitRecord
    from beacon.core.sessions import AdminSession

log = structlog.get_logger()


class SubscriberState(enum.Enum):
    CONNECTED = "connected"
    JOINED = "joined"
    DISCONNECTED = "disconnected"


@dataclass(eq=False)
class Subscriber:
    subscriber_id: int
    outbox: asyncio.Queue
    state: SubscriberState = SubscriberState.CONNECTED
    session_id: str | None = None
    dropped: int = field(default=0)


class AdminHub:
    """Owns the admin broadcast group.

    ``authorize`` maps a session token to a live AdminSession (or None); it
    is consulted on every join and is the only way into the group.
    ``is_live`` is checked for every member on publish, so a member whose
    session expired after joining stops receiving visits.
    """

    def __init__(
        self,
        authorize: Callable[[str | None], AdminSession | None],
        is_live: Callable[[str], bool] | None = None,
        outbox_size: int = 100,
    ) -> None:
        self._authorize = authorize
        self._is_live = is_live
        self._outbox_size = outbox_size
        self._lock = asyncio.Lock()
        self._ids = itertools.count(1)
        self._connected: set[Subscriber] = set()
        self._members: set[Subscriber] = set()

    def connection_count(self) -> int:
        return len(self._connected)

    def member_count(self) -> int:
        return len(self._members)

    async def connect(self) -> Subscriber:
        sub = Subscriber(
            subscriber_id=next(self._ids),
            outbox=asyncio.Queue(maxsize=self._outbox_size),
        )
        async with self._lock:
            self._connected.add(sub)
        log.debug("hub_connected", subscriber=sub.subscriber_id)
        return sub

    async def join(self, sub: Subscriber, token: str | None) -> bool:
        """Admit ``sub`` to the admin group if ``token`` is a live session."""
        if sub.state is SubscriberState.DISCONNECTED:
            return False
        session = self._authorize(token)
        if session is None:
            log.warning("admin_join_rejected", subscriber=sub.subscriber_id)
            return False
        async with self._lock:
            if sub not in self._connected:
                return False
            sub.state = SubscriberState.JOINED
            sub.session_id = session.session_id
            self._members.add(sub)
        log.info("admin_joined", subscriber=sub.subscriber_id,
                 session=session.session_id[:8], members=len(self._members))
        return True

    async def leave(self, sub: Subscriber) -> None:
        async with self._lock:
            self._members.discard(sub)
            if sub.state is SubscriberState.JOINED:
                sub.state = SubscriberState.CONNECTED
            sub.session_id = None

    async def disconnect(self, sub: Subscriber) -> None:
        async with self._lock:
            self._members.discard(sub)
            self._connected.discard(sub)
            sub.state = SubscriberState.DISCONNECTED
        log.debug("hub_disconnected", subscriber=sub.subscriber_id, dropped=sub.dropped)

    async def evict_session(self, session_id: str) -> int:
        """Remove every member that joined with ``session_id``."""
        async with self._lock:
            evicted = [s for s in self._members if s.session_id == session_id]
            self._demote(evicted)
        if evicted:
            log.info("admin_session_evicted", session=session_id[:8], count=len(evicted))
        return len(evicted)

    def _demote(self, subs: list[Subscriber]) -> None:
        """Move members back to plain connections. Caller holds the lock."""
        for sub in subs:
            self._members.discard(sub)
            sub.state = SubscriberState.CONNECTED
            sub.session_id = None

    def send(self, sub: Subscriber, message: dict) -> bool:
        """Queue a direct message for one subscriber. False if dropped."""
        try:
            sub.outbox.put_nowait(message)
        except asyncio.QueueFull:
            sub.dropped += 1
            return False
        return True

    async def publish(self, record: VisitRecord) -> int:
        """Queue a ``visit`` event for every member. Returns members reached."""
        message = {"event": "visit", "data": record.to_dict()}
        async with self._lock:
            members = list(self._members)
            if self._is_live is not None:
                expired = [s for s in members if not self._is_live(s.session_id)]
                if expired:
                    self._demote(expired)
                    members = [s for s in members if s not in expired]
                    log.info("admin_members_expired", count=len(expired))
        delivered = 0
        for sub in members:
            if self.send(sub, message):
                delivered += 1
            else:
                log.warning("hub_event_dropped", subscriber=sub.subscriber_id)
        return delivered
