"""Change Feed: in-process topic pub/sub carrying committed changes to sync streams.

Invariants:
    - publish() never blocks and never raises: a full subscriber queue marks that
      subscriber stale instead of slowing down the writer
    - A stale subscriber receives exactly one RESYNC marker and nothing else
      until it calls mark_fresh()
    - Delivery is at-least-once per live subscriber; consumers dedupe by version

Design Decisions:
    - Payload-agnostic: the feed moves (topic, payload) pairs and never inspects them
    - Topic names are built by user_topic()/presence_topic() so producers and
      consumers cannot drift apart
    - Singleton initialized on startup, same lifecycle as db_manager
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


def user_topic(user_id: str) -> str:
    return f"user:{user_id}"


def presence_topic(user_id: str) -> str:
    return f"presence:{user_id}"


@dataclass(frozen=True)
class FeedMessage:
    topic: str
    payload: Any


# Sent to a subscriber whose queue overflowed; it must re-read a full snapshot
RESYNC = FeedMessage(topic="", payload=None)

_ids = itertools.count(1)


class Subscription:
    """One consumer's view of the feed: a bounded queue plus its topic set."""

    def __init__(self, feed: "ChangeFeed", maxsize: int):
        self.id = next(_ids)
        self.stale = False
        self.closed = False
        self._feed = feed
        self._queue: asyncio.Queue[FeedMessage] = asyncio.Queue(maxsize=maxsize)
        self._topics: set[str] = set()

    @property
    def topics(self) -> frozenset[str]:
        return frozenset(self._topics)

    def add_topic(self, topic: str) -> None:
        if topic not in self._topics:
            self._topics.add(topic)
            self._feed._attach(topic, self)

    def remove_topic(self, topic: str) -> None:
        if topic in self._topics:
            self._topics.discard(topic)
            self._feed._detach(topic, self)

    async def get(self) -> FeedMessage:
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize()

    def mark_fresh(self) -> None:
        self.stale = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for topic in list(self._topics):
            self.remove_topic(topic)

    def _deliver(self, message: FeedMessage) -> None:
        if self.stale or self.closed:
            return
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            self.stale = True
            while not self._queue.empty():
                self._queue.get_nowait()
            self._queue.put_nowait(RESYNC)
            logger.warning(
                "Subscriber queue overflowed, forcing resync",
                extra={"subscriber": self.id},
            )


class ChangeFeed:
    """Topic -> subscribers fan-out."""

    def __init__(self, queue_maxsize: int = 1000):
        self.queue_maxsize = queue_maxsize
        self._subscribers: dict[str, set[Subscription]] = {}

    def subscribe(self, topics=()) -> Subscription:
        sub = Subscription(self, self.queue_maxsize)
        for topic in topics:
            sub.add_topic(topic)
        return sub

    def publish(self, topic: str, payload: Any) -> int:
        """Deliver payload to every subscriber of topic. Returns subscriber count."""
        subscribers = list(self._subscribers.get(topic, ()))
        message = FeedMessage(topic, payload)
        for sub in subscribers:
            sub._deliver(message)
        return len(subscribers)

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))

    def close(self) -> None:
        for subs in list(self._subscribers.values()):
            for sub in list(subs):
                sub.close()

    def _attach(self, topic: str, sub: Subscription) -> None:
        self._subscribers.setdefault(topic, set()).add(sub)

    def _detach(self, topic: str, sub: Subscription) -> None:
        subs = self._subscribers.get(topic)
        if subs is None:
            return
        subs.discard(sub)
        if not subs:
            del self._subscribers[topic]


# Singleton (initialized on startup)
change_feed: ChangeFeed | None = None


def init_change_feed(queue_maxsize: int = 1000) -> ChangeFeed:
    global change_feed
    change_feed = ChangeFeed(queue_maxsize)
    return change_feed


def get_change_feed() -> ChangeFeed:
    if not change_feed:
        raise RuntimeError("Change feed not initialized")
    return change_feed
