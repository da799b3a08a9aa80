"""
Triage batch-apply workflow.

A triage run arrives with auto-actions (already applied server-side) and
rewrite candidates. The user toggles candidates into a selection and
applies them in one batch:

    toggle(id)       flip selection membership
    apply selected   one title patch per selected candidate, all concurrent;
                     succeeded ids move to `applied`, failed ids stay selected
    refresh          new run; selection and applied reset, board refetched
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from .errors import MoveBoardError
from .events import EventBus
from .gateway import MoveGateway
from .schema import AutoAction, RewriteCandidate, TriageResult, PROMOTE, FILL_FIELD

logger = logging.getLogger(__name__)


def categorize_actions(actions: List[AutoAction]) -> Dict[str, List[AutoAction]]:
    """Split auto-actions by kind for display."""
    grouped: Dict[str, List[AutoAction]] = {PROMOTE: [], FILL_FIELD: []}
    for action in actions:
        grouped.setdefault(action.kind, []).append(action)
    return grouped


@dataclass
class ApplyOutcome:
    succeeded: Tuple[int, ...] = ()
    failed: Dict[int, MoveBoardError] = field(default_factory=dict)

    @property
    def requested(self) -> int:
        return len(self.succeeded) + len(self.failed)


class TriageWorkflow:
    """Owns one triage session: the run result, the selection and the applied set."""

    def __init__(self, gateway: MoveGateway, board=None, bus: Optional[EventBus] = None):
        self.gateway = gateway
        self.board = board
        self.bus = bus or (board.bus if board is not None else EventBus())
        self.result: Optional[TriageResult] = None
        self.selection: Set[int] = set()
        self.applied: Set[int] = set()
        self.is_fetching = False
        self.is_applying = False
        self.last_error: Optional[MoveBoardError] = None
        self._run_token = 0

    # ── Views ────────────────────────────────────────────────────────────────

    def visible_candidates(self) -> List[RewriteCandidate]:
        """Candidates still pending: anything already applied is hidden."""
        if self.result is None:
            return []
        return [c for c in self.result.rewrite_candidates if c.move_id not in self.applied]

    def categorized_actions(self) -> Dict[str, List[AutoAction]]:
        return categorize_actions(self.result.auto_actions if self.result else [])

    # ── Commands ─────────────────────────────────────────────────────────────

    def on_toggle_rewrite(self, move_id: int) -> Set[int]:
        if move_id in self.selection:
            self.selection.discard(move_id)
        else:
            self.selection.add(move_id)
        return set(self.selection)

    async def on_refresh_triage(self) -> bool:
        """Start a new triage run. Results from superseded runs are ignored."""
        self._run_token += 1
        token = self._run_token
        self.selection.clear()
        self.applied.clear()
        self.result = None
        self.last_error = None
        self.is_fetching = True
        self.bus.emit("triage_refreshed", result=None, fetching=True)

        try:
            result = await self.gateway.run_triage()
        except MoveBoardError as e:
            if token != self._run_token:
                return False
            logger.warning(f"Triage run failed: {e}")
            self.last_error = e
            self.bus.report(e)
            self.bus.emit("triage_refreshed", result=None, fetching=False)
            return False
        finally:
            if token == self._run_token:
                self.is_fetching = False

        if token != self._run_token:
            logger.debug(f"Dropping stale triage run {result.run_id}")
            return False
        self.result = result
        self.bus.emit("triage_refreshed", result=result, fetching=False)
        logger.info(
            f"Triage {result.run_id}: {len(result.auto_actions)} auto-actions, "
            f"{len(result.rewrite_candidates)} rewrites"
        )
        # Auto-actions may have moved lanes or filled fields server-side
        if self.board is not None:
            await self.board.refresh()
        return True

    async def on_apply_selected(self) -> ApplyOutcome:
        """Patch every selected candidate's title concurrently."""
        chosen = [c for c in self.visible_candidates() if c.move_id in self.selection]
        if not chosen:
            return ApplyOutcome()

        token = self._run_token
        self.is_applying = True
        try:
            results = await asyncio.gather(
                *(self.gateway.patch_move(c.move_id, {"title": c.suggested_title}) for c in chosen),
                return_exceptions=True,
            )
        finally:
            self.is_applying = False

        succeeded: List[int] = []
        failed: Dict[int, MoveBoardError] = {}
        unexpected: Dict[int, BaseException] = {}
        for candidate, outcome in zip(chosen, results):
            if isinstance(outcome, MoveBoardError):
                failed[candidate.move_id] = outcome
            elif isinstance(outcome, BaseException):
                unexpected[candidate.move_id] = outcome
            else:
                succeeded.append(candidate.move_id)

        result = ApplyOutcome(succeeded=tuple(succeeded), failed=failed)
        if token == self._run_token:
            # Only retryable ids stay selected
            self.selection = set(failed) | set(unexpected)
            self.applied.update(succeeded)
        else:
            logger.debug("Triage was refreshed while applying; selection left as reset")

        logger.info(f"Applied {len(succeeded)}/{result.requested + len(unexpected)} rewrites")
        for error in failed.values():
            self.bus.report(error)
        if unexpected:
            raise next(iter(unexpected.values()))
        if succeeded and not failed:
            self.bus.notify_info(f"Applied {len(succeeded)} rewrites")
        self.bus.emit("rewrites_applied", outcome=result)

        if self.board is not None:
            await self.board.refresh()
        return result
