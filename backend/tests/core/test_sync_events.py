"""Sync Events: per-viewer event derivation and version deduplication."""

import pytest

from friendsync.core.domain_types import (
    EdgeStatus, RelationshipOperation as Op, SyncEventType, UserId,
)
from friendsync.core.sync_events import (
    EdgeChange, SyncEvent, VersionTracker, derive_edge_event, snapshot_event,
)
from tests.core.builders import A, B, edge


def _change(before, after, op, actor=A, was_friend=False):
    return EdgeChange(before, after, op, actor, was_friend)


def test_request_sent_and_received_per_side():
    change = _change(
        edge(EdgeStatus.NONE, version=1),
        edge(EdgeStatus.PENDING, initiator=A, version=2),
        Op.SEND_REQUEST,
    )
    assert derive_edge_event(change, A).type == SyncEventType.REQUEST_SENT
    event = derive_edge_event(change, B)
    assert event.type == SyncEventType.REQUEST_RECEIVED
    assert event.data["other_id"] == A
    assert event.data["version"] == 2


def test_accept_is_seen_as_accepted_by_both_sides():
    change = _change(
        edge(EdgeStatus.PENDING, initiator=B, version=2),
        edge(EdgeStatus.FRIENDS, version=3),
        Op.ACCEPT_REQUEST,
    )
    assert derive_edge_event(change, A).type == SyncEventType.REQUEST_ACCEPTED
    assert derive_edge_event(change, B).type == SyncEventType.REQUEST_ACCEPTED


@pytest.mark.parametrize("op,expected", [
    (Op.CANCEL_REQUEST, SyncEventType.REQUEST_CANCELLED),
    (Op.DECLINE_REQUEST, SyncEventType.REQUEST_DECLINED),
])
def test_pending_to_none_uses_operation_to_disambiguate(op, expected):
    change = _change(
        edge(EdgeStatus.PENDING, initiator=A, version=2),
        edge(EdgeStatus.NONE, version=3),
        op,
    )
    assert derive_edge_event(change, B).type == expected


def test_blocked_event_carries_blocker_and_was_friend():
    change = _change(
        edge(EdgeStatus.FRIENDS, version=3),
        edge(EdgeStatus.BLOCKED, blocked_by=A, version=4),
        Op.BLOCK_USER, was_friend=True,
    )
    event = derive_edge_event(change, B)
    assert event.type == SyncEventType.BLOCKED
    assert event.data["blocked_by"] == A
    assert event.data["was_friend"] is True
    assert event.data["state"] == "blocked_by_them"


def test_unblock_and_remove_events():
    unblock = _change(
        edge(EdgeStatus.BLOCKED, blocked_by=A, version=4),
        edge(EdgeStatus.NONE, version=5),
        Op.UNBLOCK_USER,
    )
    assert derive_edge_event(unblock, A).type == SyncEventType.UNBLOCKED
    remove = _change(
        edge(EdgeStatus.FRIENDS, version=3),
        edge(EdgeStatus.NONE, version=4),
        Op.REMOVE_FRIEND,
    )
    assert derive_edge_event(remove, B).type == SyncEventType.FRIEND_REMOVED


def test_unchanged_viewer_state_yields_no_event():
    change = _change(
        edge(EdgeStatus.BLOCKED, blocked_by=A, version=4),
        edge(EdgeStatus.BLOCKED, blocked_by=A, version=5),
        Op.REPORT_USER,
    )
    assert derive_edge_event(change, B) is None


def test_viewer_outside_pair_gets_nothing():
    change = _change(
        edge(EdgeStatus.NONE, version=1),
        edge(EdgeStatus.PENDING, initiator=A, version=2),
        Op.SEND_REQUEST,
    )
    assert derive_edge_event(change, UserId("carol")) is None


def test_version_tracker_delivers_each_version_once():
    tracker = VersionTracker({"a:b": 3})
    assert not tracker.accept("a:b", 3)
    assert not tracker.accept("a:b", 2)
    assert tracker.accept("a:b", 4)
    assert not tracker.accept("a:b", 4)
    assert tracker.accept("c:d", 1)
    assert tracker.last("a:b") == 4


def test_version_tracker_reset_replaces_high_water_marks():
    tracker = VersionTracker({"a:b": 9})
    tracker.reset({"a:b": 2})
    assert tracker.accept("a:b", 3)


def test_version_tracker_forget_redelivers_same_version():
    tracker = VersionTracker({"presence:a": 5})
    tracker.forget("presence:a")
    tracker.forget("presence:missing")
    assert tracker.last("presence:a") == 0
    assert tracker.accept("presence:a", 5)


def test_snapshot_event_shape():
    event = snapshot_event(
        friends=[], incoming=[], outgoing=[], blocked=[], presence=[],
        versions={"a:b": 1},
    )
    assert isinstance(event, SyncEvent)
    data = event.to_dict()
    assert data["type"] == "snapshot"
    assert set(data["data"]) == {
        "friends", "incoming_requests", "outgoing_requests",
        "blocked", "presence", "versions",
    }
