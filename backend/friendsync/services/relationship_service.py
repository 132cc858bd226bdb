"""Relationship Service: read, evaluate, compare-and-swap, retry, publish.

Invariants:
    - Every mutation runs as its own task under a timeout; on timeout the caller
      gets MutationTimeoutError while the task runs to completion (never cancelled)
    - A lost CAS re-reads the pair and re-evaluates; after cas_max_attempts the
      caller gets TransientStoreFailureError
    - A transition that would break a pair invariant is refused before commit
    - Each committed edge change is published once to BOTH users' topics
    - With an idempotency key, the first committed outcome is replayed verbatim

Design Decisions:
    - The pure state machine decides; this module only sequences IO around it
    - Idempotency lookup happens inside the retry loop: a racing duplicate that
      loses on the idempotency primary key replays the winner's outcome
    - Results are TransitionResult values; their dict form is what the idempotency
      record stores and what the API returns
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from friendsync.config import Settings, get_settings
from friendsync.core.domain_types import (
    EdgeStatus, RelationshipOperation, RelationshipState, UserId,
)
from friendsync.core.enforce_transitions import (
    Transition, apply_block_changes, evaluate_transition,
    find_invariant_violations, require_confirmation,
)
from friendsync.core.errors import (
    ErrorContext, FriendSyncError, IdempotencyKeyReusedError,
    InvalidReasonError, InvariantViolationError, MutationTimeoutError,
    SelfRequestError, TransientStoreFailureError,
)
from friendsync.core.projections import (
    Page, friend_ids, paginate_blocks, paginate_edges, select_by_state, summarize,
)
from friendsync.core.relationship_edge import (
    BlockRecord, IdempotencyRecord, RelationshipEdge,
)
from friendsync.core.repository_protocols import RelationshipRepository
from friendsync.core.sync_events import EdgeChange
from friendsync.infrastructure.change_feed import ChangeFeed, user_topic

logger = logging.getLogger(__name__)

# Strong references to mutations the caller stopped waiting for
_detached: set[asyncio.Task] = set()


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of one relationship mutation, from the actor's perspective."""
    operation: RelationshipOperation
    other_id: UserId
    state: RelationshipState
    edge: dict = field(default_factory=dict)
    changed: bool = True
    was_friend: bool = False
    implicit_accept: bool = False
    replayed: bool = False
    report_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "operation": self.operation.value,
            "other_id": self.other_id,
            "state": self.state.value,
            "changed": self.changed,
            "was_friend": self.was_friend,
            "implicit_accept": self.implicit_accept,
            "replayed": self.replayed,
            "report_id": self.report_id,
            "edge": self.edge,
        }

    @classmethod
    def from_dict(cls, data: dict, *, replayed: bool = False) -> "TransitionResult":
        return cls(
            operation=RelationshipOperation(data["operation"]),
            other_id=UserId(data["other_id"]),
            state=RelationshipState(data["state"]),
            edge=dict(data.get("edge") or {}),
            changed=data.get("changed", True),
            was_friend=data.get("was_friend", False),
            implicit_accept=data.get("implicit_accept", False),
            replayed=replayed,
            report_id=data.get("report_id"),
        )

    @classmethod
    def from_transition(cls, transition: Transition) -> "TransitionResult":
        edge = transition.result_edge
        return cls(
            operation=transition.operation,
            other_id=transition.other,
            state=edge.state_for(transition.actor),
            edge=edge.to_dict(transition.actor),
            changed=not transition.is_noop,
            was_friend=transition.was_friend,
            implicit_accept=transition.implicit_accept,
            report_id=str(transition.report.id) if transition.report else None,
        )


class RelationshipService:
    """Relationship mutations and projections for one process."""

    def __init__(
        self,
        store: RelationshipRepository,
        feed: ChangeFeed,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.feed = feed
        self.settings = settings or get_settings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ─── Request lifecycle ───────────────────────────────────────

    async def send_request(
        self, actor: UserId, other: UserId, *, idempotency_key: str | None = None,
    ) -> TransitionResult:
        return await self._mutate(
            RelationshipOperation.SEND_REQUEST, actor, other,
            idempotency_key=idempotency_key,
        )

    async def accept_request(
        self, actor: UserId, other: UserId, *, idempotency_key: str | None = None,
    ) -> TransitionResult:
        return await self._mutate(
            RelationshipOperation.ACCEPT_REQUEST, actor, other,
            idempotency_key=idempotency_key,
        )

    async def decline_request(
        self, actor: UserId, other: UserId, *, idempotency_key: str | None = None,
    ) -> TransitionResult:
        return await self._mutate(
            RelationshipOperation.DECLINE_REQUEST, actor, other,
            idempotency_key=idempotency_key,
        )

    async def cancel_request(
        self, actor: UserId, other: UserId, *, idempotency_key: str | None = None,
    ) -> TransitionResult:
        return await self._mutate(
            RelationshipOperation.CANCEL_REQUEST, actor, other,
            idempotency_key=idempotency_key,
        )

    async def remove_friend(
        self, actor: UserId, other: UserId, *,
        confirmed: bool = False, idempotency_key: str | None = None,
    ) -> TransitionResult:
        return await self._mutate(
            RelationshipOperation.REMOVE_FRIEND, actor, other,
            confirmed=confirmed, idempotency_key=idempotency_key,
        )

    # ─── Blocking & reporting ────────────────────────────────────

    async def block_user(
        self, actor: UserId, other: UserId, *, reason: str | None = None,
        confirmed: bool = False, idempotency_key: str | None = None,
    ) -> TransitionResult:
        return await self._mutate(
            RelationshipOperation.BLOCK_USER, actor, other, reason=reason,
            confirmed=confirmed, idempotency_key=idempotency_key,
        )

    async def unblock_user(
        self, actor: UserId, other: UserId, *, idempotency_key: str | None = None,
    ) -> TransitionResult:
        return await self._mutate(
            RelationshipOperation.UNBLOCK_USER, actor, other,
            idempotency_key=idempotency_key,
        )

    async def report_user(
        self, actor: UserId, other: UserId, reason: str, *,
        confirmed: bool = False, idempotency_key: str | None = None,
    ) -> TransitionResult:
        return await self._mutate(
            RelationshipOperation.REPORT_USER, actor, other, reason=reason,
            confirmed=confirmed, idempotency_key=idempotency_key,
        )

    # ─── Projections ─────────────────────────────────────────────

    async def relationship_status(self, viewer: UserId, other: UserId) -> dict:
        """Viewer-centric state of one pair."""
        if viewer == other:
            raise SelfRequestError(ErrorContext(actor_id=viewer, other_id=other))
        snapshot = await self.store.load_pair(viewer, other)
        edge = snapshot.edge
        return {
            "other_id": other,
            "state": edge.state_for(viewer).value,
            "version": edge.version,
            "blocked_by_me": snapshot.block_from(viewer) is not None,
            "blocked_by_them": snapshot.block_from(other) is not None,
            "edge": edge.to_dict(viewer),
        }

    async def list_friends(
        self, viewer: UserId, limit: int | None = None, cursor: str | None = None,
    ) -> Page[RelationshipEdge]:
        return await self._list_state(
            viewer, EdgeStatus.FRIENDS, RelationshipState.FRIENDS, limit, cursor,
        )

    async def list_incoming_requests(
        self, viewer: UserId, limit: int | None = None, cursor: str | None = None,
    ) -> Page[RelationshipEdge]:
        return await self._list_state(
            viewer, EdgeStatus.PENDING, RelationshipState.INCOMING_PENDING,
            limit, cursor,
        )

    async def list_outgoing_requests(
        self, viewer: UserId, limit: int | None = None, cursor: str | None = None,
    ) -> Page[RelationshipEdge]:
        return await self._list_state(
            viewer, EdgeStatus.PENDING, RelationshipState.OUTGOING_PENDING,
            limit, cursor,
        )

    async def list_blocked(
        self, viewer: UserId, limit: int | None = None, cursor: str | None = None,
    ) -> Page[BlockRecord]:
        blocks = await self.store.list_blocks_by(viewer)
        return paginate_blocks(blocks, self._page_size(limit), cursor)

    async def relationship_summary(self, viewer: UserId) -> dict[str, int]:
        edges = await self.store.list_edges(
            viewer, (EdgeStatus.FRIENDS, EdgeStatus.PENDING),
        )
        blocks = await self.store.list_blocks_by(viewer)
        return summarize(edges, blocks, viewer)

    async def friend_ids(self, viewer: UserId) -> set[UserId]:
        edges = await self.store.list_edges(viewer, (EdgeStatus.FRIENDS,))
        return friend_ids(edges, viewer)

    async def _list_state(
        self, viewer: UserId, status: EdgeStatus, state: RelationshipState,
        limit: int | None, cursor: str | None,
    ) -> Page[RelationshipEdge]:
        edges = await self.store.list_edges(viewer, (status,))
        selected = select_by_state(edges, viewer, state)
        return paginate_edges(selected, viewer, self._page_size(limit), cursor)

    def _page_size(self, limit: int | None) -> int:
        if not limit or limit < 1:
            return self.settings.default_page_size
        return min(limit, self.settings.max_page_size)

    # ─── Mutation pipeline ───────────────────────────────────────

    async def _mutate(
        self,
        operation: RelationshipOperation,
        actor: UserId,
        other: UserId,
        *,
        reason: str | None = None,
        confirmed: bool = True,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        context = ErrorContext(
            actor_id=actor, other_id=other, operation=operation,
            idempotency_key=idempotency_key,
        )
        if actor == other:
            raise SelfRequestError(context)
        require_confirmation(operation, confirmed, context)
        if (
            operation == RelationshipOperation.REPORT_USER
            and reason is not None
            and len(reason) > self.settings.report_reason_max_length
        ):
            raise InvalidReasonError(context)

        timeout = self.settings.mutation_timeout_seconds
        task = asyncio.ensure_future(self._run_with_retries(
            operation, actor, other, reason, idempotency_key, context,
        ))
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            _detach(task, context)
            logger.warning(
                f"{operation.value} timed out after {timeout}s",
                extra={
                    "actor_id": actor, "other_id": other,
                    "operation": operation.value, "error_code": "TIMEOUT",
                },
            )
            raise MutationTimeoutError(timeout, context) from None
        except asyncio.CancelledError:
            _detach(task, context)
            raise
        except FriendSyncError as e:
            if e.context.operation is None:
                e.context = context
            raise

    async def _run_with_retries(
        self,
        operation: RelationshipOperation,
        actor: UserId,
        other: UserId,
        reason: str | None,
        idempotency_key: str | None,
        context: ErrorContext,
    ) -> TransitionResult:
        attempts = self.settings.cas_max_attempts
        for attempt in range(1, attempts + 1):
            if idempotency_key:
                record = await self.store.find_idempotency(actor, idempotency_key)
                if record is not None:
                    return _replay(record, operation, other, context)

            snapshot = await self.store.load_pair(actor, other)
            transition = evaluate_transition(
                snapshot, operation, actor, other, self._clock(),
                reason=reason, tolerate_replay=idempotency_key is not None,
            )
            result = TransitionResult.from_transition(transition)
            if transition.is_noop and not idempotency_key:
                return result

            if not transition.is_noop:
                violations = find_invariant_violations(
                    transition.after, apply_block_changes(snapshot.blocks, transition),
                )
                if violations:
                    logger.error(
                        f"Refusing transition: {', '.join(violations)}",
                        extra={
                            "actor_id": actor, "other_id": other,
                            "operation": operation.value,
                            "pair": str(snapshot.key),
                        },
                    )
                    raise InvariantViolationError(violations, context)

            record = None
            if idempotency_key:
                record = IdempotencyRecord(
                    actor_id=actor, key=idempotency_key,
                    operation=operation.value, other_id=other,
                    result=result.to_dict(), created_at=self._clock(),
                )
            committed = await self.store.commit(snapshot, transition, record)
            if committed is None:
                logger.info(
                    "Compare-and-swap lost, re-evaluating",
                    extra={
                        "actor_id": actor, "other_id": other,
                        "operation": operation.value, "attempt": attempt,
                        "pair": str(snapshot.key),
                    },
                )
                continue

            if not transition.is_noop:
                self._publish(transition, committed)
            logger.info(
                f"{operation.value} committed",
                extra={
                    "actor_id": actor, "other_id": other,
                    "operation": operation.value, "version": committed.version,
                },
            )
            return result

        raise TransientStoreFailureError(
            f"pair stayed contended for {attempts} attempts",
            "compare_and_swap", context,
        )

    def _publish(self, transition: Transition, committed: RelationshipEdge) -> None:
        change = EdgeChange(
            before=transition.before,
            after=committed,
            operation=transition.operation,
            actor=transition.actor,
            was_friend=transition.was_friend,
        )
        for user in committed.key:
            self.feed.publish(user_topic(user), change)


def _replay(
    record: IdempotencyRecord, operation: RelationshipOperation,
    other: UserId, context: ErrorContext,
) -> TransitionResult:
    if record.operation != operation.value or record.other_id != other:
        raise IdempotencyKeyReusedError(context)
    logger.info(
        "Replaying recorded outcome",
        extra={
            "actor_id": record.actor_id, "other_id": other,
            "operation": operation.value,
        },
    )
    return TransitionResult.from_dict(record.result, replayed=True)


def _detach(task: asyncio.Task, context: ErrorContext) -> None:
    """Let an abandoned mutation finish and log how it ended."""
    _detached.add(task)

    def _done(t: asyncio.Task) -> None:
        _detached.discard(t)
        if t.cancelled():
            return
        exc = t.exception()
        extra = {
            "actor_id": context.actor_id, "other_id": context.other_id,
            "operation": context.operation.value if context.operation else None,
        }
        if exc is not None:
            logger.warning(f"Abandoned mutation failed: {exc}", extra=extra)
        else:
            logger.info("Abandoned mutation completed", extra=extra)

    task.add_done_callback(_done)
