"""Request State Machine: pure legality and side effects of every relationship intent.

Invariants:
    - evaluate_transition is PURE: takes a PairSnapshot, returns a Transition, never IO
    - Illegal transitions raise a RelationshipError subclass; nothing is half-applied
    - Only the non-initiator accepts/declines; only the initiator cancels
    - A BlockRecord in either direction rejects send_request with BLOCKED
    - block_user supersedes any pending/friends edge; unblock never restores it
    - report_user yields a ReportRecord AND a block in the same Transition
    - A send_request that finds the other side's pending request becomes an
      implicit accept (mutual requests converge to FRIENDS, no error)

Design Decisions:
    - Explicit dict dispatch from operation to evaluator: every mapping in one place
    - Transition.after is None for idempotent no-ops (already blocked, replayed
      remove/unblock); the shell then skips the write entirely
    - find_invariant_violations is a separate checker so the shell can refuse to
      commit a transition that would break the pair invariants
"""

from dataclasses import dataclass
from datetime import datetime

from friendsync.core.domain_types import (
    DESTRUCTIVE_OPERATIONS, EdgeStatus, RelationshipOperation, UserId,
)
from friendsync.core.errors import (
    AlreadyFriendsError, BlockedError, ConfirmationRequiredError, ErrorContext,
    InvalidReasonError, NoPendingRequestError, NoSuchFriendshipError, NotBlockedError,
    NotInitiatorError, NotRecipientError, RequestAlreadyPendingError,
    SelfRequestError,
)
from friendsync.core.relationship_edge import (
    BlockRecord, PairSnapshot, RelationshipEdge, ReportRecord,
)


@dataclass(frozen=True)
class Transition:
    """Outcome of evaluating one intent against one pair snapshot."""
    operation: RelationshipOperation
    actor: UserId
    other: UserId
    before: RelationshipEdge
    after: RelationshipEdge | None = None
    block_upsert: BlockRecord | None = None
    block_delete: tuple[UserId, UserId] | None = None
    report: ReportRecord | None = None
    was_friend: bool = False
    implicit_accept: bool = False

    @property
    def is_noop(self) -> bool:
        return self.after is None

    @property
    def result_edge(self) -> RelationshipEdge:
        return self.after if self.after is not None else self.before


@dataclass(frozen=True)
class _Intent:
    snapshot: PairSnapshot
    operation: RelationshipOperation
    actor: UserId
    other: UserId
    now: datetime
    reason: str | None
    tolerate_replay: bool
    context: ErrorContext

    @property
    def edge(self) -> RelationshipEdge:
        return self.snapshot.edge

    def transition(self, **fields) -> Transition:
        return Transition(
            operation=self.operation, actor=self.actor, other=self.other,
            before=self.edge, **fields,
        )


def evaluate_transition(
    snapshot: PairSnapshot,
    operation: RelationshipOperation,
    actor: UserId,
    other: UserId,
    now: datetime,
    *,
    reason: str | None = None,
    tolerate_replay: bool = False,
) -> Transition:
    """Decide the transition for `operation` issued by `actor` against `other`.

    tolerate_replay is set when the caller supplied an idempotency key: a
    remove_friend / unblock_user that finds its effect already in place then
    succeeds as a no-op instead of failing.
    """
    context = ErrorContext(
        actor_id=actor, other_id=other, operation=operation,
    )
    if actor == other:
        raise SelfRequestError(context)
    intent = _Intent(
        snapshot, operation, actor, other, now,
        reason, tolerate_replay, context,
    )
    return _EVALUATORS[operation](intent)


# ─── Request lifecycle ───────────────────────────────────────────

def _send_request(intent: _Intent) -> Transition:
    edge = intent.edge
    if intent.snapshot.is_blocked or edge.status == EdgeStatus.BLOCKED:
        raise BlockedError(intent.context)
    if edge.status == EdgeStatus.FRIENDS:
        raise AlreadyFriendsError(intent.context)
    if edge.status == EdgeStatus.PENDING:
        if edge.initiator_id == intent.actor:
            raise RequestAlreadyPendingError(intent.context)
        # Mutual request: the other side already asked, so this is an accept
        return intent.transition(
            after=_befriend(edge, intent.now), implicit_accept=True,
        )
    return intent.transition(after=edge.advance(
        intent.now,
        status=EdgeStatus.PENDING,
        initiator_id=intent.actor,
        blocked_by=None,
        accepted_at=None,
    ))


def _require_incoming_pending(intent: _Intent) -> None:
    edge = intent.edge
    if edge.status != EdgeStatus.PENDING:
        raise NoPendingRequestError(intent.context)
    if edge.initiator_id == intent.actor:
        raise NotRecipientError(intent.context)


def _accept_request(intent: _Intent) -> Transition:
    _require_incoming_pending(intent)
    return intent.transition(after=_befriend(intent.edge, intent.now))


def _decline_request(intent: _Intent) -> Transition:
    _require_incoming_pending(intent)
    return intent.transition(after=_reset(intent.edge, intent.now))


def _cancel_request(intent: _Intent) -> Transition:
    edge = intent.edge
    if edge.status != EdgeStatus.PENDING:
        raise NoPendingRequestError(intent.context)
    if edge.initiator_id != intent.actor:
        raise NotInitiatorError(intent.context)
    return intent.transition(after=_reset(edge, intent.now))


def _remove_friend(intent: _Intent) -> Transition:
    edge = intent.edge
    if edge.status == EdgeStatus.FRIENDS:
        return intent.transition(
            after=_reset(edge, intent.now), was_friend=True,
        )
    if intent.tolerate_replay and edge.status == EdgeStatus.NONE:
        return intent.transition()
    raise NoSuchFriendshipError(intent.context)


# ─── Blocking & reporting ────────────────────────────────────────

def _block_user(intent: _Intent) -> Transition:
    if intent.snapshot.block_from(intent.actor) is not None:
        return intent.transition()
    edge = intent.edge
    return intent.transition(
        after=edge.advance(
            intent.now,
            status=EdgeStatus.BLOCKED,
            blocked_by=intent.actor,
            initiator_id=None,
            accepted_at=None,
        ),
        block_upsert=BlockRecord(
            blocker_id=intent.actor,
            blocked_id=intent.other,
            blocked_at=intent.now,
            reason=_clean(intent.reason),
        ),
        was_friend=edge.status == EdgeStatus.FRIENDS,
    )


def _unblock_user(intent: _Intent) -> Transition:
    if intent.snapshot.block_from(intent.actor) is None:
        if intent.tolerate_replay:
            return intent.transition()
        raise NotBlockedError(intent.context)
    edge = intent.edge
    if intent.snapshot.block_from(intent.other) is not None:
        # The other side's own block still stands
        after = edge.advance(
            intent.now, status=EdgeStatus.BLOCKED, blocked_by=intent.other,
        )
    else:
        after = _reset(edge, intent.now)
    return intent.transition(
        after=after, block_delete=(intent.actor, intent.other),
    )


def _report_user(intent: _Intent) -> Transition:
    reason = _clean(intent.reason)
    if not reason:
        raise InvalidReasonError(intent.context)
    report = ReportRecord(
        reporter_id=intent.actor,
        reported_id=intent.other,
        reason=reason,
        reported_at=intent.now,
    )
    block = _block_user(intent)
    if block.is_noop:
        # Already blocked: still bump the version so the report commits under CAS
        return intent.transition(
            after=intent.edge.advance(intent.now), report=report,
        )
    return intent.transition(
        after=block.after,
        block_upsert=block.block_upsert,
        report=report,
        was_friend=block.was_friend,
    )


_EVALUATORS = {
    RelationshipOperation.SEND_REQUEST: _send_request,
    RelationshipOperation.ACCEPT_REQUEST: _accept_request,
    RelationshipOperation.DECLINE_REQUEST: _decline_request,
    RelationshipOperation.CANCEL_REQUEST: _cancel_request,
    RelationshipOperation.REMOVE_FRIEND: _remove_friend,
    RelationshipOperation.BLOCK_USER: _block_user,
    RelationshipOperation.UNBLOCK_USER: _unblock_user,
    RelationshipOperation.REPORT_USER: _report_user,
}


# ─── Helpers ─────────────────────────────────────────────────────

def _befriend(edge: RelationshipEdge, now: datetime) -> RelationshipEdge:
    return edge.advance(
        now, status=EdgeStatus.FRIENDS, initiator_id=None, accepted_at=now,
    )


def _reset(edge: RelationshipEdge, now: datetime) -> RelationshipEdge:
    return edge.advance(
        now, status=EdgeStatus.NONE,
        initiator_id=None, blocked_by=None, accepted_at=None,
    )


def _clean(text: str | None) -> str | None:
    if text is None:
        return None
    return text.strip() or None


def apply_block_changes(
    blocks: tuple[BlockRecord, ...], transition: Transition,
) -> tuple[BlockRecord, ...]:
    """Block records of the pair after `transition` commits."""
    result = [
        b for b in blocks
        if (b.blocker_id, b.blocked_id) != transition.block_delete
    ]
    if transition.block_upsert is not None:
        result.append(transition.block_upsert)
    return tuple(result)


def find_invariant_violations(
    edge: RelationshipEdge, blocks: tuple[BlockRecord, ...],
) -> list[str]:
    """Every pair invariant the (edge, blocks) combination breaks. Empty = valid."""
    violations = []
    if edge.key.low == edge.key.high:
        violations.append("self-relationship")
    pending = edge.status == EdgeStatus.PENDING
    if pending != (edge.initiator_id is not None):
        violations.append("initiator set iff pending")
    if edge.initiator_id is not None and not edge.involves(edge.initiator_id):
        violations.append("initiator outside pair")
    blocked = edge.status == EdgeStatus.BLOCKED
    if blocked != (edge.blocked_by is not None):
        violations.append("blocked_by set iff blocked")
    blockers = {b.blocker_id for b in blocks}
    if blocks and not blocked:
        violations.append("block record without blocked edge")
    if blocked and edge.blocked_by not in blockers:
        violations.append("blocked edge without matching block record")
    for b in blocks:
        if not (edge.involves(b.blocker_id) and edge.involves(b.blocked_id)):
            violations.append("block record outside pair")
    return violations


CONFIRMATION_PROMPTS: dict[RelationshipOperation, str] = {
    RelationshipOperation.REMOVE_FRIEND: (
        "Are you sure you want to remove this user from your friends list?"
    ),
    RelationshipOperation.BLOCK_USER: (
        "Are you sure you want to block this user? They will be removed from "
        "your friends list and won't be able to send you friend requests."
    ),
    RelationshipOperation.REPORT_USER: (
        "Report this user? Reporting also blocks them."
    ),
}


def require_confirmation(
    operation: RelationshipOperation, confirmed: bool,
    context: ErrorContext | None = None,
) -> None:
    """Destructive operations must be re-issued with confirmed=True."""
    if operation in DESTRUCTIVE_OPERATIONS and not confirmed:
        raise ConfirmationRequiredError(CONFIRMATION_PROMPTS[operation], context)
