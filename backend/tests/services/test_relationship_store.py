"""Relationship Store: CAS semantics and atomic side effects against SQLite."""

from datetime import timedelta

from friendsync.core.domain_types import EdgeStatus, RelationshipOperation
from friendsync.core.enforce_transitions import evaluate_transition
from friendsync.core.relationship_edge import IdempotencyRecord
from tests.core.builders import A, B, NOW


def _evaluate(snapshot, operation, actor=A, other=B, **kwargs):
    return evaluate_transition(snapshot, operation, actor, other, NOW, **kwargs)


async def test_never_seen_pair_loads_as_empty(relationship_store):
    snapshot = await relationship_store.load_pair(A, B)
    assert snapshot.edge.status == EdgeStatus.NONE
    assert snapshot.edge.version == 0
    assert snapshot.blocks == ()


async def test_commit_inserts_then_updates(relationship_store):
    empty = await relationship_store.load_pair(A, B)
    sent = _evaluate(empty, RelationshipOperation.SEND_REQUEST)
    committed = await relationship_store.commit(empty, sent)
    assert committed.version == 1

    pending = await relationship_store.load_pair(B, A)
    assert pending.edge.status == EdgeStatus.PENDING
    assert pending.edge.initiator_id == A
    assert pending.edge.created_at == NOW

    accepted = _evaluate(pending, RelationshipOperation.ACCEPT_REQUEST, B, A)
    await relationship_store.commit(pending, accepted)
    friends = await relationship_store.load_pair(A, B)
    assert friends.edge.status == EdgeStatus.FRIENDS
    assert friends.edge.version == 2


async def test_stale_snapshot_loses_the_swap(relationship_store):
    empty = await relationship_store.load_pair(A, B)
    await relationship_store.commit(
        empty, _evaluate(empty, RelationshipOperation.SEND_REQUEST),
    )
    pending = await relationship_store.load_pair(A, B)
    await relationship_store.commit(
        pending, _evaluate(pending, RelationshipOperation.CANCEL_REQUEST),
    )

    stale = _evaluate(pending, RelationshipOperation.ACCEPT_REQUEST, B, A)
    assert await relationship_store.commit(pending, stale) is None
    assert (await relationship_store.load_pair(A, B)).edge.status == EdgeStatus.NONE


async def test_concurrent_first_insert_loses(relationship_store):
    empty = await relationship_store.load_pair(A, B)
    first = _evaluate(empty, RelationshipOperation.SEND_REQUEST, A, B)
    second = _evaluate(empty, RelationshipOperation.SEND_REQUEST, B, A)

    assert await relationship_store.commit(empty, first) is not None
    assert await relationship_store.commit(empty, second) is None


async def test_block_commits_edge_and_record_together(relationship_store):
    empty = await relationship_store.load_pair(A, B)
    blocked = _evaluate(empty, RelationshipOperation.BLOCK_USER, reason=" spam ")
    await relationship_store.commit(empty, blocked)

    snapshot = await relationship_store.load_pair(B, A)
    assert snapshot.edge.blocked_by == A
    assert snapshot.block_from(A).reason == "spam"
    assert [b.blocked_id for b in await relationship_store.list_blocks_by(A)] == [B]
    assert await relationship_store.list_blocks_by(B) == []

    unblocked = _evaluate(snapshot, RelationshipOperation.UNBLOCK_USER)
    await relationship_store.commit(snapshot, unblocked)
    assert (await relationship_store.load_pair(A, B)).blocks == ()


async def test_report_is_written_with_its_block(relationship_store):
    empty = await relationship_store.load_pair(A, B)
    report = _evaluate(empty, RelationshipOperation.REPORT_USER, reason="abuse")
    await relationship_store.commit(empty, report)

    reports = await relationship_store.list_reports(A)
    assert len(reports) == 1
    assert reports[0].id == report.report.id
    assert reports[0].reported_at == NOW
    assert (await relationship_store.load_pair(A, B)).block_from(A) is not None


async def test_lost_swap_discards_idempotency_record(relationship_store):
    empty = await relationship_store.load_pair(A, B)
    await relationship_store.commit(
        empty, _evaluate(empty, RelationshipOperation.SEND_REQUEST),
    )
    record = IdempotencyRecord(
        actor_id=B, key="k", operation="send_request", other_id=A,
        result={"state": "friends"}, created_at=NOW,
    )
    losing = _evaluate(empty, RelationshipOperation.SEND_REQUEST, B, A)
    assert await relationship_store.commit(empty, losing, record) is None
    assert await relationship_store.find_idempotency(B, "k") is None


async def test_idempotency_record_round_trip(relationship_store):
    empty = await relationship_store.load_pair(A, B)
    record = IdempotencyRecord(
        actor_id=A, key="k1", operation="block_user", other_id=B,
        result={"state": "blocked_by_me"}, created_at=NOW,
    )
    await relationship_store.commit(
        empty, _evaluate(empty, RelationshipOperation.BLOCK_USER), record,
    )
    found = await relationship_store.find_idempotency(A, "k1")
    assert found.operation == "block_user"
    assert found.other_id == B
    assert found.result == {"state": "blocked_by_me"}
    assert await relationship_store.find_idempotency(B, "k1") is None


async def test_list_edges_filters_by_status(relationship_store):
    empty = await relationship_store.load_pair(A, B)
    await relationship_store.commit(
        empty, _evaluate(empty, RelationshipOperation.SEND_REQUEST),
    )
    pending = await relationship_store.list_edges(A, (EdgeStatus.PENDING,))
    assert [e.key.other(A) for e in pending] == [B]
    assert await relationship_store.list_edges(B, (EdgeStatus.FRIENDS,)) == []
    assert pending[0].updated_at - NOW == timedelta(0)
