"""Change Feed: topic fan-out, dynamic topics, overflow -> single RESYNC."""

from friendsync.infrastructure.change_feed import (
    RESYNC, ChangeFeed, get_change_feed, init_change_feed, presence_topic,
    user_topic,
)


def test_topic_names():
    assert user_topic("alice") == "user:alice"
    assert presence_topic("alice") == "presence:alice"


async def test_publish_reaches_only_topic_subscribers():
    feed = ChangeFeed(10)
    alice = feed.subscribe([user_topic("alice")])
    bob = feed.subscribe([user_topic("bob")])

    assert feed.publish(user_topic("alice"), "hello") == 1

    message = await alice.get()
    assert message.topic == "user:alice"
    assert message.payload == "hello"
    assert bob.pending() == 0


async def test_publish_without_subscribers_is_dropped():
    feed = ChangeFeed(10)
    assert feed.publish(user_topic("nobody"), "x") == 0


async def test_topics_can_be_added_and_removed():
    feed = ChangeFeed(10)
    sub = feed.subscribe()
    sub.add_topic(presence_topic("bob"))
    feed.publish(presence_topic("bob"), 1)
    sub.remove_topic(presence_topic("bob"))
    feed.publish(presence_topic("bob"), 2)

    assert sub.pending() == 1
    assert (await sub.get()).payload == 1
    assert feed.subscriber_count(presence_topic("bob")) == 0


async def test_overflow_replaces_queue_with_single_resync():
    feed = ChangeFeed(2)
    sub = feed.subscribe([user_topic("alice")])
    for i in range(5):
        feed.publish(user_topic("alice"), i)

    assert sub.stale
    assert sub.pending() == 1
    assert await sub.get() is RESYNC

    sub.mark_fresh()
    feed.publish(user_topic("alice"), "after")
    assert (await sub.get()).payload == "after"


async def test_overflow_of_one_subscriber_does_not_affect_others():
    feed = ChangeFeed(1)
    slow = feed.subscribe([user_topic("alice")])
    fast = feed.subscribe([user_topic("alice")])

    feed.publish(user_topic("alice"), 1)
    await fast.get()
    feed.publish(user_topic("alice"), 2)

    assert slow.stale
    assert not fast.stale
    assert (await fast.get()).payload == 2


def test_close_detaches_every_topic():
    feed = ChangeFeed(10)
    sub = feed.subscribe([user_topic("alice"), presence_topic("bob")])
    sub.close()
    assert sub.closed
    assert sub.topics == frozenset()
    assert feed.subscriber_count(user_topic("alice")) == 0
    assert feed.publish(presence_topic("bob"), "x") == 0


def test_singleton_lifecycle():
    feed = init_change_feed(5)
    assert get_change_feed() is feed
    assert feed.queue_maxsize == 5
