"""
Server-side triage run.

Every client should always have something to do today, something next,
and something waiting:

    active  ≥ 1   ("Today")
    queued  ≥ 1   ("Up next")
    backlog ≥ 1

A run fills pipeline gaps by promoting moves, backfills missing sizing
fields, then reports whatever is still unhealthy. Rewrite suggestions are
delegated to a pluggable suggester; the default one suggests nothing.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from .errors import MoveBoardError
from .schema import (
    Move, Client, Lane, DrainType, AutoAction, RewriteCandidate,
    PipelineHealth, TriageResult, PROMOTE, FILL_FIELD,
)
from .store import MoveStore

logger = logging.getLogger(__name__)

# suggester(open_moves, clients) -> candidates
RewriteSuggester = Callable[[List[Move], List[Client]], List[RewriteCandidate]]

DEFAULT_FIELD_VALUES = {
    "effort_estimate": 2,
    "drain_type": DrainType.ADMIN.value,
}


def no_suggestions(moves: List[Move], clients: List[Client]) -> List[RewriteCandidate]:
    return []


def _by_lane(moves: List[Move]) -> Dict[Lane, List[Move]]:
    grouped: Dict[Lane, List[Move]] = {Lane.ACTIVE: [], Lane.QUEUED: [], Lane.BACKLOG: []}
    for move in moves:
        if move.lane in grouped:
            grouped[move.lane].append(move)
    return grouped


def pipeline_issues(moves: List[Move]) -> List[str]:
    """Gaps in one client's pipeline."""
    lanes = _by_lane(moves)
    issues = []
    if not lanes[Lane.ACTIVE]:
        issues.append("No active move (Today)")
    if not lanes[Lane.QUEUED]:
        issues.append("No queued move (Up next)")
    if not lanes[Lane.BACKLOG]:
        issues.append("Empty backlog")
    return issues


def _promote(store: MoveStore, move: Move, target: Lane, client: Client) -> Optional[AutoAction]:
    try:
        store.patch_move(move.id, {"lane": target.value})
    except MoveBoardError as e:
        logger.warning(f"Failed to auto-promote move {move.id} to {target.value}: {e}")
        return None
    return AutoAction(
        kind=PROMOTE,
        move_id=move.id,
        title=move.title,
        client_name=client.name,
        from_lane=move.lane.value,
        to_lane=target.value,
    )


def fill_pipeline_gaps(store: MoveStore, client: Client) -> List[AutoAction]:
    """
    Promote moves into empty lanes for one client.

    No active move: the first queued move steps up (or the first backlog
    move when nothing is queued). Then, no queued move: the first backlog
    move steps up. Each promotion is attempted independently.
    """
    actions: List[AutoAction] = []

    lanes = _by_lane(store.list_moves(client_id=client.id))
    if not lanes[Lane.ACTIVE]:
        source = lanes[Lane.QUEUED] or lanes[Lane.BACKLOG]
        if source:
            action = _promote(store, source[0], Lane.ACTIVE, client)
            if action:
                actions.append(action)

    lanes = _by_lane(store.list_moves(client_id=client.id))
    if not lanes[Lane.QUEUED] and lanes[Lane.BACKLOG]:
        action = _promote(store, lanes[Lane.BACKLOG][0], Lane.QUEUED, client)
        if action:
            actions.append(action)

    return actions


def backfill_fields(store: MoveStore, moves: List[Move]) -> List[AutoAction]:
    """Write defaults for missing effort/drain fields on open moves."""
    actions: List[AutoAction] = []
    for move in moves:
        missing = {}
        if move.effort_estimate is None:
            missing["effort_estimate"] = DEFAULT_FIELD_VALUES["effort_estimate"]
        if move.drain_type is None:
            missing["drain_type"] = DEFAULT_FIELD_VALUES["drain_type"]
        if not missing:
            continue
        try:
            store.patch_move(move.id, missing)
        except MoveBoardError as e:
            logger.warning(f"Failed to backfill move {move.id}: {e}")
            continue
        for field_name, value in missing.items():
            actions.append(AutoAction(
                kind=FILL_FIELD,
                move_id=move.id,
                title=move.title,
                client_name=move.client_name,
                field=field_name,
                value=value,
            ))
    return actions


def run_triage(store: MoveStore, suggester: Optional[RewriteSuggester] = None) -> TriageResult:
    """
    Run one triage pass against the store.

    Side-effecting: promotions and backfills are written before this
    returns, best effort, one move at a time.
    """
    suggester = suggester or no_suggestions
    now = datetime.now(timezone.utc)
    run_id = uuid.uuid4().hex[:12]
    logger.info(f"Triage run {run_id} started")

    clients = store.list_clients()
    actions: List[AutoAction] = []
    for client in clients:
        actions.extend(fill_pipeline_gaps(store, client))

    actions.extend(backfill_fields(store, store.list_moves()))

    open_moves = store.list_moves()
    health = PipelineHealth(total_clients=len(clients))
    for client in clients:
        issues = pipeline_issues([m for m in open_moves if m.client_id == client.id])
        if issues:
            health.clients_with_issues.append({"client_name": client.name, "issues": issues})
    health.healthy_clients = health.total_clients - len(health.clients_with_issues)

    open_by_id = {m.id: m for m in open_moves}
    candidates = []
    for candidate in suggester(open_moves, clients):
        move = open_by_id.get(candidate.move_id)
        suggestion = (candidate.suggested_title or "").strip()
        if move is None or not suggestion or suggestion == move.title:
            continue
        candidates.append(candidate)

    result = TriageResult(
        run_id=run_id,
        date=now.date().isoformat(),
        timestamp=now.isoformat(),
        auto_actions=actions,
        rewrite_candidates=candidates,
        pipeline_health=health,
    )
    logger.info(
        f"Triage run {run_id} finished: {len(actions)} auto-actions, "
        f"{len(candidates)} rewrite candidates, "
        f"{health.healthy_clients}/{health.total_clients} clients healthy"
    )
    return result
