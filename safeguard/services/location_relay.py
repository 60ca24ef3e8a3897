"""Live location relay: per-subject broadcast of position samples."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

_END = object()

# samples a viewer may fall behind by before the oldest are dropped
MAX_BACKLOG = 100


@dataclass(frozen=True)
class LocationSample:
    """One position report. Lives only on the wire, never persisted."""

    user_id: int
    lat: float
    lng: float
    accuracy: float | None = None
    full_name: str | None = None
    msg: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_wire(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "fullName": self.full_name,
            "lat": self.lat,
            "lng": self.lng,
            "accuracy": self.accuracy,
            "msg": self.msg,
            "timestamp": self.timestamp.isoformat(),
        }


class Subscription:
    """A viewer's stream of samples for one subject.

    Iterate with ``async for``; iteration stops when the viewer calls
    ``close()`` or the subject's episode is resolved.
    """

    def __init__(self, relay: "LocationRelay", subject_id: int, max_backlog: int = MAX_BACKLOG) -> None:
        self.subject_id = subject_id
        self._relay = relay
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=max_backlog)
        self.dropped = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _deliver(self, sample: LocationSample) -> bool:
        if self._closed:
            return False
        self._put(sample)
        return True

    def _put(self, item: Any) -> None:
        """Enqueue, dropping the oldest sample when a slow viewer is full."""
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(item)

    def _end(self) -> None:
        if not self._closed:
            self._closed = True
            self._put(_END)

    async def get(self) -> LocationSample | None:
        """Next sample, or None once the stream has ended."""
        item = await self._queue.get()
        if item is _END:
            # keep later get() calls from blocking forever
            self._queue.put_nowait(_END)
            return None
        return item

    def close(self) -> None:
        self._relay._unsubscribe(self)
        self._end()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> LocationSample:
        sample = await self.get()
        if sample is None:
            raise StopAsyncIteration
        return sample

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()


class LocationRelay:
    """Publish/subscribe channel keyed by subject user id.

    Each subscription owns its own queue, so a slow viewer or a busy subject
    never holds up anyone else. There is no replay: a new subscriber only sees
    samples published after it joined.
    """

    def __init__(self, max_backlog: int = MAX_BACKLOG) -> None:
        self.max_backlog = max_backlog
        # subject_id -> open subscriptions
        self._subscriptions: dict[int, set[Subscription]] = {}
        # subjects whose episode was resolved; joins close immediately
        self._closed_subjects: set[int] = set()

    def open_subject(self, subject_id: int) -> None:
        """Start accepting samples and viewers for a new episode."""
        self._closed_subjects.discard(subject_id)

    def subscribe(self, subject_id: int) -> Subscription:
        sub = Subscription(self, subject_id, self.max_backlog)
        if subject_id in self._closed_subjects:
            sub._end()
            return sub
        self._subscriptions.setdefault(subject_id, set()).add(sub)
        logger.info("Relay subscribe: subject=%s (viewers=%s)", subject_id, self.subscriber_count(subject_id))
        return sub

    def _unsubscribe(self, sub: Subscription) -> None:
        subs = self._subscriptions.get(sub.subject_id)
        if subs and sub in subs:
            subs.discard(sub)
            if not subs:
                del self._subscriptions[sub.subject_id]
            logger.info(
                "Relay unsubscribe: subject=%s (viewers=%s)", sub.subject_id, self.subscriber_count(sub.subject_id)
            )

    def publish(self, subject_id: int, sample: LocationSample) -> int:
        """Broadcast to current viewers. Returns how many received it."""
        if subject_id in self._closed_subjects:
            logger.debug("Relay drop: subject=%s is closed", subject_id)
            return 0
        delivered = 0
        for sub in list(self._subscriptions.get(subject_id, ())):
            if sub._deliver(sample):
                delivered += 1
        return delivered

    def close_subject(self, subject_id: int) -> int:
        """End the episode: close every viewer and refuse new ones until reopened."""
        self._closed_subjects.add(subject_id)
        subs = self._subscriptions.pop(subject_id, set())
        for sub in subs:
            sub._end()
        logger.info("Relay closed: subject=%s (viewers closed=%s)", subject_id, len(subs))
        return len(subs)

    def subscriber_count(self, subject_id: int) -> int:
        return len(self._subscriptions.get(subject_id, ()))

    @property
    def total_subscriptions(self) -> int:
        return sum(len(s) for s in self._subscriptions.values())
