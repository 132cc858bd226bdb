"""Relationship Store: SQLAlchemy implementation of RelationshipRepository.

Invariants:
    - commit() is all-or-nothing: edge, blocks, report and idempotency record
      share one transaction
    - The edge write is conditional on the snapshot version (UPDATE ... WHERE
      version = expected, or INSERT for a never-seen pair); a lost race returns
      None and writes nothing
    - Returned domain records always carry tz-aware UTC datetimes

Design Decisions:
    - IntegrityError is caught inside the session block: for a fresh pair a
      primary-key collision IS the lost-race signal, not a store failure
    - Every call opens its own session so a retry never reuses a poisoned one
"""

import logging
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.exc import IntegrityError

from friendsync.core.domain_types import EdgeStatus, PairKey, UserId, pair_key
from friendsync.core.enforce_transitions import Transition
from friendsync.core.relationship_edge import (
    BlockRecord, IdempotencyRecord, PairSnapshot, RelationshipEdge, ReportRecord,
)
from friendsync.infrastructure.database import DatabaseSessionManager
from friendsync.models.block import BlockModel
from friendsync.models.idempotency_key import IdempotencyKeyModel
from friendsync.models.relationship_edge import RelationshipEdgeModel
from friendsync.models.report import ReportModel

logger = logging.getLogger(__name__)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class SqlRelationshipStore:
    """Relationship persistence on top of DatabaseSessionManager."""

    def __init__(self, db: DatabaseSessionManager):
        self._db = db

    # ─── Reads ───────────────────────────────────────────────────

    async def load_pair(self, a: UserId, b: UserId) -> PairSnapshot:
        key = pair_key(a, b)
        async with self._db.session() as db:
            row = await db.get(RelationshipEdgeModel, (key.low, key.high))
            result = await db.execute(
                select(BlockModel).where(or_(
                    and_(BlockModel.blocker_id == a, BlockModel.blocked_id == b),
                    and_(BlockModel.blocker_id == b, BlockModel.blocked_id == a),
                ))
            )
            blocks = tuple(_to_block(m) for m in result.scalars().all())
        edge = _to_edge(row) if row else RelationshipEdge(key=key)
        return PairSnapshot(edge=edge, blocks=blocks)

    async def find_idempotency(
        self, actor: UserId, key: str,
    ) -> IdempotencyRecord | None:
        async with self._db.session() as db:
            row = await db.get(IdempotencyKeyModel, (actor, key))
        if row is None:
            return None
        return IdempotencyRecord(
            actor_id=UserId(row.actor_id),
            key=row.key,
            operation=row.operation,
            other_id=UserId(row.other_id),
            result=dict(row.result),
            created_at=as_utc(row.created_at),
        )

    async def list_edges(
        self, user: UserId, statuses: Iterable[EdgeStatus],
    ) -> list[RelationshipEdge]:
        values = [s.value for s in statuses]
        async with self._db.session() as db:
            result = await db.execute(
                select(RelationshipEdgeModel).where(
                    or_(
                        RelationshipEdgeModel.user_low == user,
                        RelationshipEdgeModel.user_high == user,
                    ),
                    RelationshipEdgeModel.status.in_(values),
                )
            )
            return [_to_edge(m) for m in result.scalars().all()]

    async def list_blocks_by(self, user: UserId) -> list[BlockRecord]:
        async with self._db.session() as db:
            result = await db.execute(
                select(BlockModel).where(BlockModel.blocker_id == user)
            )
            return [_to_block(m) for m in result.scalars().all()]

    async def list_reports(
        self, reporter: UserId, reported: UserId | None = None,
    ) -> list[ReportRecord]:
        query = select(ReportModel).where(ReportModel.reporter_id == reporter)
        if reported is not None:
            query = query.where(ReportModel.reported_id == reported)
        async with self._db.session() as db:
            result = await db.execute(query.order_by(ReportModel.reported_at))
            return [
                ReportRecord(
                    reporter_id=UserId(m.reporter_id),
                    reported_id=UserId(m.reported_id),
                    reason=m.reason,
                    reported_at=as_utc(m.reported_at),
                    resulting_block=m.resulting_block,
                    id=m.id,
                )
                for m in result.scalars().all()
            ]

    # ─── Writes ──────────────────────────────────────────────────

    async def commit(
        self, snapshot: PairSnapshot, transition: Transition,
        idempotency: IdempotencyRecord | None = None,
    ) -> RelationshipEdge | None:
        """Apply transition if the pair is still at snapshot.edge.version."""
        async with self._db.session() as db:
            try:
                if transition.after is not None:
                    won = await _write_edge(db, snapshot.edge, transition.after)
                    if not won:
                        await db.rollback()
                        return None
                if transition.block_delete is not None:
                    blocker, blocked = transition.block_delete
                    await db.execute(delete(BlockModel).where(
                        BlockModel.blocker_id == blocker,
                        BlockModel.blocked_id == blocked,
                    ))
                if transition.block_upsert is not None:
                    block = transition.block_upsert
                    await db.merge(BlockModel(
                        blocker_id=block.blocker_id,
                        blocked_id=block.blocked_id,
                        reason=block.reason,
                        blocked_at=block.blocked_at,
                    ))
                if transition.report is not None:
                    report = transition.report
                    db.add(ReportModel(
                        id=report.id,
                        reporter_id=report.reporter_id,
                        reported_id=report.reported_id,
                        reason=report.reason,
                        resulting_block=report.resulting_block,
                        reported_at=report.reported_at,
                    ))
                if idempotency is not None:
                    db.add(IdempotencyKeyModel(
                        actor_id=idempotency.actor_id,
                        key=idempotency.key,
                        operation=idempotency.operation,
                        other_id=idempotency.other_id,
                        result=idempotency.result,
                        created_at=idempotency.created_at,
                    ))
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.info(
                    "Lost commit race on pair",
                    extra={
                        "pair": str(snapshot.key),
                        "version": snapshot.edge.version,
                    },
                )
                return None
        return transition.result_edge


async def _write_edge(db, before: RelationshipEdge, after: RelationshipEdge) -> bool:
    key = after.key
    if not before.exists:
        db.add(RelationshipEdgeModel(
            user_low=key.low,
            user_high=key.high,
            **_edge_columns(after),
        ))
        await db.flush()
        return True
    result = await db.execute(
        update(RelationshipEdgeModel)
        .where(
            RelationshipEdgeModel.user_low == key.low,
            RelationshipEdgeModel.user_high == key.high,
            RelationshipEdgeModel.version == before.version,
        )
        .values(**_edge_columns(after))
    )
    return result.rowcount == 1


def _edge_columns(edge: RelationshipEdge) -> dict:
    return {
        "status": edge.status.value,
        "initiator_id": edge.initiator_id,
        "blocked_by": edge.blocked_by,
        "created_at": edge.created_at,
        "updated_at": edge.updated_at,
        "accepted_at": edge.accepted_at,
        "version": edge.version,
    }


def _to_edge(m: RelationshipEdgeModel) -> RelationshipEdge:
    return RelationshipEdge(
        key=PairKey(UserId(m.user_low), UserId(m.user_high)),
        status=EdgeStatus(m.status),
        initiator_id=UserId(m.initiator_id) if m.initiator_id else None,
        blocked_by=UserId(m.blocked_by) if m.blocked_by else None,
        created_at=as_utc(m.created_at),
        updated_at=as_utc(m.updated_at),
        accepted_at=as_utc(m.accepted_at),
        version=m.version,
    )


def _to_block(m: BlockModel) -> BlockRecord:
    return BlockRecord(
        blocker_id=UserId(m.blocker_id),
        blocked_id=UserId(m.blocked_id),
        blocked_at=as_utc(m.blocked_at),
        reason=m.reason,
    )
