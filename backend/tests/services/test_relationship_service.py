"""Relationship Service: end-to-end mutation pipeline against a real database.

Tests cover:
    - request lifecycle, blocking, reporting through the public operations
    - mutual requests converge to friends, sequentially AND with a lost CAS
    - idempotency keys: replay, tolerated no-op, key reuse
    - confirmation round-trip, reason validation
    - CAS retry exhaustion, timeout without cancellation, store failure context
    - refusal of invariant-breaking transitions
    - change-feed publication to both users
"""

import asyncio

import pytest

from friendsync.config import Settings
from friendsync.core.domain_types import (
    EdgeStatus, RelationshipState, UserId, pair_key,
)
from friendsync.core.errors import (
    BlockedError, ConfirmationRequiredError, IdempotencyKeyReusedError,
    InvalidReasonError, InvariantViolationError, MutationTimeoutError,
    NoPendingRequestError, NoSuchFriendshipError, NotRecipientError,
    SelfRequestError, TransientStoreFailureError,
)
from friendsync.core.relationship_edge import (
    BlockRecord, PairSnapshot, RelationshipEdge,
)
from friendsync.core.sync_events import EdgeChange
from friendsync.infrastructure.change_feed import user_topic
from friendsync.services.relationship_service import RelationshipService
from tests.core.builders import NOW

A = UserId("alice")
B = UserId("bob")
C = UserId("carol")


class _StoreProxy:
    """Delegates to a real store; subclasses override single methods."""

    def __init__(self, inner):
        self.inner = inner

    def __getattr__(self, name):
        return getattr(self.inner, name)


class _InterleavingStore(_StoreProxy):
    """Runs `competitor` right before the first commit attempt."""

    def __init__(self, inner, competitor):
        super().__init__(inner)
        self._competitor = competitor
        self.commits = 0

    async def commit(self, snapshot, transition, idempotency=None):
        self.commits += 1
        if self._competitor is not None:
            competitor, self._competitor = self._competitor, None
            await competitor()
        return await self.inner.commit(snapshot, transition, idempotency)


class _AlwaysContendedStore(_StoreProxy):
    def __init__(self, inner):
        super().__init__(inner)
        self.commits = 0

    async def commit(self, snapshot, transition, idempotency=None):
        self.commits += 1
        return None


class _SlowStore(_StoreProxy):
    def __init__(self, inner, delay):
        super().__init__(inner)
        self.delay = delay

    async def load_pair(self, a, b):
        await asyncio.sleep(self.delay)
        return await self.inner.load_pair(a, b)


class _FailingStore(_StoreProxy):
    async def load_pair(self, a, b):
        raise TransientStoreFailureError("connection refused", "execute")


class _CorruptStore(_StoreProxy):
    """Serves a FRIENDS edge that still carries a block record."""

    def __init__(self, inner):
        super().__init__(inner)
        self.commits = 0

    async def load_pair(self, a, b):
        edge = RelationshipEdge(
            key=pair_key(a, b), status=EdgeStatus.FRIENDS, version=3,
        )
        block = BlockRecord(blocker_id=b, blocked_id=a, blocked_at=NOW)
        return PairSnapshot(edge=edge, blocks=(block,))

    async def commit(self, snapshot, transition, idempotency=None):
        self.commits += 1
        return transition.result_edge


def _service_with(store, feed, settings, clock):
    return RelationshipService(store, feed, settings, clock)


# ─── Request lifecycle ───────────────────────────────────────────

async def test_send_request_shows_outgoing_and_incoming(relationships):
    result = await relationships.send_request(A, B)
    assert result.state == RelationshipState.OUTGOING_PENDING
    assert result.changed

    outgoing = await relationships.list_outgoing_requests(A)
    incoming = await relationships.list_incoming_requests(B)
    assert [e.key.other(A) for e in outgoing.items] == [B]
    assert [e.key.other(B) for e in incoming.items] == [A]
    assert (await relationships.list_incoming_requests(A)).items == []


async def test_initiator_cannot_accept_own_request(relationships):
    await relationships.send_request(A, B)
    with pytest.raises(NotRecipientError):
        await relationships.accept_request(A, B)


async def test_accept_makes_both_sides_friends(relationships, befriend):
    result = await befriend(A, B)
    assert result.state == RelationshipState.FRIENDS
    assert (await relationships.relationship_status(A, B))["state"] == "friends"
    assert (await relationships.relationship_status(B, A))["state"] == "friends"


async def test_decline_and_cancel_return_pair_to_none(relationships):
    await relationships.send_request(A, B)
    await relationships.decline_request(B, A)
    assert (await relationships.relationship_status(A, B))["state"] == "none"

    await relationships.send_request(A, B)
    await relationships.cancel_request(A, B)
    status = await relationships.relationship_status(B, A)
    assert status["state"] == "none"
    assert status["version"] == 4


async def test_self_request_rejected_before_any_io(relationships):
    with pytest.raises(SelfRequestError):
        await relationships.send_request(A, A)
    with pytest.raises(SelfRequestError):
        await relationships.relationship_status(A, A)


# ─── Mutual requests ─────────────────────────────────────────────

async def test_sequential_mutual_requests_become_friends(relationships):
    await relationships.send_request(A, B)
    result = await relationships.send_request(B, A)
    assert result.implicit_accept
    assert result.state == RelationshipState.FRIENDS
    assert (await relationships.relationship_status(A, B))["state"] == "friends"


async def test_simultaneous_mutual_requests_converge_after_lost_insert(
    relationship_store, feed, settings, clock,
):
    bob_service = _service_with(relationship_store, feed, settings, clock)
    store = _InterleavingStore(
        relationship_store, lambda: bob_service.send_request(B, A),
    )
    alice_service = _service_with(store, feed, settings, clock)

    result = await alice_service.send_request(A, B)

    assert store.commits == 2
    assert result.implicit_accept
    assert result.state == RelationshipState.FRIENDS
    snapshot = await relationship_store.load_pair(A, B)
    assert snapshot.edge.status == EdgeStatus.FRIENDS
    assert snapshot.edge.version == 2


async def test_accept_racing_cancel_re_evaluates_and_fails(
    relationships, relationship_store, feed, settings, clock,
):
    await relationships.send_request(A, B)
    store = _InterleavingStore(
        relationship_store, lambda: relationships.cancel_request(A, B),
    )
    bob_service = _service_with(store, feed, settings, clock)

    with pytest.raises(NoPendingRequestError):
        await bob_service.accept_request(B, A)
    assert (await relationships.relationship_status(A, B))["state"] == "none"


async def test_cas_exhaustion_is_transient_store_failure(
    relationship_store, feed, settings, clock,
):
    store = _AlwaysContendedStore(relationship_store)
    service = _service_with(store, feed, settings, clock)

    with pytest.raises(TransientStoreFailureError) as exc:
        await service.send_request(A, B)
    assert store.commits == settings.cas_max_attempts
    assert exc.value.code == "TRANSIENT_STORE_FAILURE"
    assert exc.value.retryable is False


# ─── Blocking ────────────────────────────────────────────────────

async def test_block_then_request_fails_blocked_both_ways(relationships):
    await relationships.block_user(A, B, confirmed=True)
    with pytest.raises(BlockedError):
        await relationships.send_request(A, B)
    with pytest.raises(BlockedError):
        await relationships.send_request(B, A)


async def test_block_removes_friendship_and_reports_was_friend(relationships, befriend):
    await befriend(A, B)
    result = await relationships.block_user(A, B, reason="rude", confirmed=True)
    assert result.was_friend
    assert result.state == RelationshipState.BLOCKED_BY_ME
    assert (await relationships.list_friends(A)).items == []
    blocked = await relationships.list_blocked(A)
    assert [(b.blocked_id, b.reason) for b in blocked.items] == [(B, "rude")]


async def test_block_twice_is_idempotent_success_without_write(relationships):
    await relationships.block_user(A, B, confirmed=True)
    again = await relationships.block_user(A, B, confirmed=True)
    assert not again.changed
    assert (await relationships.relationship_status(A, B))["version"] == 1


async def test_block_unblock_round_trip_allows_new_request(relationships, befriend):
    await befriend(A, B)
    await relationships.block_user(A, B, confirmed=True)
    await relationships.unblock_user(A, B)
    status = await relationships.relationship_status(A, B)
    assert status["state"] == "none"
    assert not status["blocked_by_me"]

    result = await relationships.send_request(B, A)
    assert result.state == RelationshipState.OUTGOING_PENDING


async def test_unblock_keeps_other_sides_block(relationships):
    await relationships.block_user(A, B, confirmed=True)
    await relationships.block_user(B, A, confirmed=True)
    await relationships.unblock_user(A, B)
    status = await relationships.relationship_status(A, B)
    assert status["state"] == "blocked_by_them"
    assert status["blocked_by_them"]


async def test_destructive_action_without_confirmation_writes_nothing(relationships):
    with pytest.raises(ConfirmationRequiredError):
        await relationships.block_user(A, B)
    assert (await relationships.relationship_status(A, B))["version"] == 0


# ─── Reporting ───────────────────────────────────────────────────

async def test_report_implies_block(relationships, relationship_store):
    result = await relationships.report_user(A, B, "spam links", confirmed=True)
    assert result.report_id is not None
    assert result.state == RelationshipState.BLOCKED_BY_ME
    reports = await relationship_store.list_reports(A, B)
    assert [r.reason for r in reports] == ["spam links"]
    assert reports[0].resulting_block
    assert (await relationship_store.load_pair(A, B)).block_from(A) is not None


async def test_report_with_empty_reason_creates_nothing(relationships, relationship_store):
    with pytest.raises(InvalidReasonError):
        await relationships.report_user(A, B, "   ", confirmed=True)
    assert await relationship_store.list_reports(A) == []
    snapshot = await relationship_store.load_pair(A, B)
    assert snapshot.blocks == ()
    assert snapshot.edge.version == 0


async def test_report_reason_too_long_is_invalid(relationships, settings):
    with pytest.raises(InvalidReasonError):
        await relationships.report_user(
            A, B, "x" * (settings.report_reason_max_length + 1), confirmed=True,
        )


async def test_block_reason_is_not_held_to_report_length(relationships, settings):
    reason = "x" * (settings.report_reason_max_length + 100)
    result = await relationships.block_user(A, B, reason=reason, confirmed=True)
    assert result.state == RelationshipState.BLOCKED_BY_ME
    blocked = await relationships.list_blocked(A)
    assert [len(b.reason) for b in blocked.items] == [len(reason)]


async def test_report_of_already_blocked_user_is_recorded(relationships, relationship_store):
    await relationships.block_user(A, B, confirmed=True)
    await relationships.report_user(A, B, "still harassing", confirmed=True)
    assert len(await relationship_store.list_reports(A, B)) == 1


# ─── Idempotency ─────────────────────────────────────────────────

async def test_remove_friend_twice_with_same_key_succeeds_twice(relationships, befriend):
    await befriend(A, B)
    first = await relationships.remove_friend(
        A, B, confirmed=True, idempotency_key="k-remove",
    )
    second = await relationships.remove_friend(
        A, B, confirmed=True, idempotency_key="k-remove",
    )
    assert first.state == second.state == RelationshipState.NONE
    assert not first.replayed
    assert second.replayed
    assert second.was_friend


async def test_remove_with_new_key_after_removal_is_noop_success(relationships, befriend):
    await befriend(A, B)
    await relationships.remove_friend(A, B, confirmed=True, idempotency_key="k1")
    result = await relationships.remove_friend(
        A, B, confirmed=True, idempotency_key="k2",
    )
    assert not result.changed
    assert result.state == RelationshipState.NONE


async def test_remove_without_key_after_removal_fails(relationships, befriend):
    await befriend(A, B)
    await relationships.remove_friend(A, B, confirmed=True)
    with pytest.raises(NoSuchFriendshipError):
        await relationships.remove_friend(A, B, confirmed=True)


async def test_idempotency_key_reused_for_other_operation(relationships):
    await relationships.block_user(A, B, confirmed=True, idempotency_key="k")
    with pytest.raises(IdempotencyKeyReusedError):
        await relationships.unblock_user(A, B, idempotency_key="k")


async def test_idempotency_key_reused_for_other_user(relationships):
    await relationships.block_user(A, B, confirmed=True, idempotency_key="k")
    with pytest.raises(IdempotencyKeyReusedError):
        await relationships.block_user(A, C, confirmed=True, idempotency_key="k")


# ─── Timeouts & store failures ───────────────────────────────────

async def test_timeout_reports_while_mutation_completes(
    relationship_store, feed, clock,
):
    settings = Settings(mutation_timeout_seconds=0.05)
    service = _service_with(
        _SlowStore(relationship_store, delay=0.2), feed, settings, clock,
    )

    with pytest.raises(MutationTimeoutError) as exc:
        await service.block_user(A, B, confirmed=True, idempotency_key="k-slow")
    assert exc.value.retryable
    assert exc.value.http_status == 504

    await asyncio.sleep(0.5)
    snapshot = await relationship_store.load_pair(A, B)
    assert snapshot.edge.status == EdgeStatus.BLOCKED

    replay = await _service_with(
        relationship_store, feed, settings, clock,
    ).block_user(A, B, confirmed=True, idempotency_key="k-slow")
    assert replay.replayed


async def test_timeout_of_non_idempotent_operation_is_not_retryable(
    relationship_store, feed, clock,
):
    settings = Settings(mutation_timeout_seconds=0.05)
    service = _service_with(
        _SlowStore(relationship_store, delay=0.2), feed, settings, clock,
    )
    with pytest.raises(MutationTimeoutError) as exc:
        await service.send_request(A, B)
    assert not exc.value.retryable
    await asyncio.sleep(0.5)


async def test_store_failure_gets_operation_context(
    relationship_store, feed, settings, clock,
):
    service = _service_with(_FailingStore(relationship_store), feed, settings, clock)
    with pytest.raises(TransientStoreFailureError) as exc:
        await service.unblock_user(A, B, idempotency_key="k")
    assert exc.value.context.actor_id == A
    assert exc.value.retryable


async def test_invariant_breaking_transition_is_refused(
    relationship_store, feed, settings, clock,
):
    store = _CorruptStore(relationship_store)
    service = _service_with(store, feed, settings, clock)
    with pytest.raises(InvariantViolationError) as exc:
        await service.remove_friend(A, B, confirmed=True)
    assert store.commits == 0
    assert "block record without blocked edge" in exc.value.violations


# ─── Publication ─────────────────────────────────────────────────

async def test_committed_change_is_published_to_both_users(relationships, feed):
    sub_a = feed.subscribe([user_topic(A)])
    sub_b = feed.subscribe([user_topic(B)])

    await relationships.send_request(A, B)

    for sub in (sub_a, sub_b):
        message = await asyncio.wait_for(sub.get(), 1)
        assert isinstance(message.payload, EdgeChange)
        assert message.payload.after.status == EdgeStatus.PENDING
        assert message.payload.version == 1


async def test_noop_is_not_published(relationships, feed):
    await relationships.block_user(A, B, confirmed=True)
    sub = feed.subscribe([user_topic(B)])
    await relationships.block_user(A, B, confirmed=True)
    assert sub.pending() == 0


# ─── Projections ─────────────────────────────────────────────────

async def test_summary_and_paginated_friends(relationships, befriend, clock):
    for other in ("u1", "u2", "u3"):
        await befriend(A, UserId(other))
        clock.advance(60)
    await relationships.send_request(UserId("u4"), A)
    await relationships.send_request(A, UserId("u5"))
    await relationships.block_user(A, UserId("u6"), confirmed=True)

    assert await relationships.relationship_summary(A) == {
        "friends": 3, "incoming": 1, "outgoing": 1, "blocked": 1,
    }
    page = await relationships.list_friends(A, limit=2)
    assert [e.key.other(A) for e in page.items] == ["u3", "u2"]
    rest = await relationships.list_friends(A, limit=2, cursor=page.next_cursor)
    assert [e.key.other(A) for e in rest.items] == ["u1"]


async def test_full_two_user_scenario(relationships):
    await relationships.send_request(A, B)
    await relationships.accept_request(B, A)
    assert (await relationships.relationship_summary(A))["friends"] == 1

    await relationships.remove_friend(A, B, confirmed=True)
    assert (await relationships.relationship_status(B, A))["state"] == "none"

    await relationships.block_user(A, B, confirmed=True)
    with pytest.raises(BlockedError):
        await relationships.send_request(B, A)

    await relationships.unblock_user(A, B)
    await relationships.send_request(B, A)
    result = await relationships.accept_request(A, B)
    assert result.state == RelationshipState.FRIENDS
    assert (await relationships.list_friends(B)).items[0].key.other(B) == A
