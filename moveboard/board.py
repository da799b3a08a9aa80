"""
Board engine: lane views, drop resolution, and the optimistic
write → reconcile cycle against the durable store.

Each drop is applied locally first, then patched, then the authoritative
list is refetched. Overlapping drops on the same lane are not coalesced:
each resolves against whatever lane state exists when it lands, so the
final order under such a race is whatever the last refresh reports.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .errors import MoveBoardError, NetworkError, NotFound, ValidationError
from .events import EventBus
from .gateway import MoveGateway
from .schema import BOARD_LANES, DragOperation, Lane, Move

logger = logging.getLogger(__name__)


def lane_view(items: List[Move], lane: Lane) -> List[Move]:
    """Moves in `lane`, ordered by position (id breaks ties)."""
    return sorted((m for m in items if m.lane == lane), key=lambda m: (m.position, m.id))


def lane_views(items: List[Move]) -> Dict[Lane, List[Move]]:
    return {lane: lane_view(items, lane) for lane in BOARD_LANES}


@dataclass(frozen=True)
class DropResolution:
    """Result of resolving one drop against a collection of moves."""
    move: Move
    new_lane: Lane
    new_position: int
    items: List[Move]


def resolve_drop(items: List[Move], op: DragOperation) -> Optional[DropResolution]:
    """
    Compute the board after a drop without touching `items`.

    Returns None for a drop back onto the same slot. The destination lane,
    and the source lane when it differs, are densely renumbered 0..n-1.
    Raises ValidationError when the gesture no longer matches the board.
    """
    if op.is_noop:
        return None
    for lane in (op.source_lane, op.destination_lane):
        if lane not in BOARD_LANES:
            raise ValidationError(f"Cannot drop into or out of {lane.value}", field="lane")

    source = lane_view(items, op.source_lane)
    if not 0 <= op.source_index < len(source):
        raise ValidationError(
            f"No move at {op.source_lane.value}[{op.source_index}]", field="position"
        )
    moved = source[op.source_index]
    if moved.id != op.move_id:
        raise ValidationError(
            f"Move {op.move_id} is no longer at {op.source_lane.value}[{op.source_index}]",
            field="position",
        )

    destination = [m for m in lane_view(items, op.destination_lane) if m.id != moved.id]
    if not 0 <= op.destination_index <= len(destination):
        raise ValidationError(
            f"Index {op.destination_index} is outside {op.destination_lane.value}",
            field="position",
        )

    updated = moved.copy(lane=op.destination_lane, position=op.destination_index)
    destination.insert(op.destination_index, updated)

    renumbered: Dict[int, Move] = {}
    for pos, move in enumerate(destination):
        renumbered[move.id] = move if move is updated else move.copy(position=pos)
    if op.source_lane != op.destination_lane:
        remaining = [m for m in source if m.id != moved.id]
        for pos, move in enumerate(remaining):
            renumbered[move.id] = move.copy(position=pos)

    new_items = [renumbered.get(m.id, m) for m in items]
    return DropResolution(
        move=updated,
        new_lane=op.destination_lane,
        new_position=op.destination_index,
        items=new_items,
    )


@dataclass
class DropOutcome:
    """Last drop as seen by the view (for animation/feedback)."""
    move_id: int
    from_lane: Lane
    to_lane: Lane
    position: int
    status: str = "pending"  # "pending" | "saved" | "failed"
    error: Optional[str] = None


class Board:
    """
    Owns the move collection and drives gestures against the gateway.

    Exposes read-only lane views plus the commands on_drop, on_complete
    and on_create. No exception escapes a command; failures become
    notifications on the bus.
    """

    def __init__(self, gateway: MoveGateway, bus: Optional[EventBus] = None, settings=None):
        self.gateway = gateway
        self.bus = bus or EventBus()
        self.settings = settings
        self._items: List[Move] = []
        self.last_drop: Optional[DropOutcome] = None
        self._refresh_token = 0
        self.last_refresh_error: Optional[MoveBoardError] = None
        self._background: Optional[asyncio.Task] = None

    # ── Views ────────────────────────────────────────────────────────────────

    @property
    def items(self) -> List[Move]:
        return list(self._items)

    def lane_view(self, lane: Lane) -> List[Move]:
        return lane_view(self._items, lane)

    def lanes(self) -> Dict[Lane, List[Move]]:
        return lane_views(self._items)

    def get(self, move_id: int) -> Optional[Move]:
        return next((m for m in self._items if m.id == move_id), None)

    # ── Reconciliation ───────────────────────────────────────────────────────

    def _next_token(self) -> int:
        self._refresh_token += 1
        return self._refresh_token

    async def refresh(self) -> bool:
        """Replace local state with the store's. Stale responses are dropped."""
        token = self._next_token()
        try:
            items = await self.gateway.list_moves()
        except MoveBoardError as e:
            logger.warning(f"Refresh failed: {e}")
            if token == self._refresh_token:
                self.last_refresh_error = e
                self.bus.report(e)
            return False
        if token != self._refresh_token:
            logger.debug(f"Dropping stale refresh {token} (latest {self._refresh_token})")
            return False
        self.last_refresh_error = None
        self._items = [m for m in items if m.lane in BOARD_LANES]
        self.bus.emit("board_refreshed", items=self.items)
        return True

    def schedule_refetch(self, delay: Optional[float] = None) -> asyncio.Task:
        """Reconcile in the background after a transport failure."""
        if delay is None:
            delay = self.settings.refetch_delay_secs if self.settings else 2.0
        if self._background and not self._background.done():
            return self._background

        async def _later():
            await asyncio.sleep(delay)
            await self.refresh()

        self._background = asyncio.get_running_loop().create_task(_later())
        return self._background

    def _apply_local(self, items: List[Move]) -> None:
        # Optimistic state supersedes any refresh still in flight
        self._next_token()
        self._items = items

    async def _reconcile(self, error: MoveBoardError) -> None:
        self.bus.report(error)
        if isinstance(error, NetworkError):
            self.schedule_refetch()
        elif not await self.refresh() and isinstance(self.last_refresh_error, NetworkError):
            self.schedule_refetch()

    # ── Commands ─────────────────────────────────────────────────────────────

    async def on_drop(self, op: DragOperation) -> Optional[DropOutcome]:
        """Resolve a drop, apply it locally, then persist and reconcile."""
        try:
            resolution = resolve_drop(self._items, op)
        except ValidationError as e:
            logger.warning(f"Rejected drop of move {op.move_id}: {e}")
            self.bus.report(e)
            return None
        if resolution is None:
            return None

        self._apply_local(resolution.items)
        outcome = DropOutcome(
            move_id=op.move_id,
            from_lane=op.source_lane,
            to_lane=resolution.new_lane,
            position=resolution.new_position,
        )
        self.last_drop = outcome
        self.bus.emit("drop_resolved", outcome=outcome)
        logger.info(
            f"Move {op.move_id}: {op.source_lane.value}[{op.source_index}] → "
            f"{resolution.new_lane.value}[{resolution.new_position}]"
        )

        try:
            await self.gateway.patch_move(
                op.move_id,
                {"lane": resolution.new_lane.value, "position": resolution.new_position},
            )
        except MoveBoardError as e:
            logger.warning(f"Patch for move {op.move_id} failed: {e}")
            outcome.status = "failed"
            outcome.error = str(e)
            self.bus.emit("drop_resolved", outcome=outcome)
            await self._reconcile(e)
            return outcome

        outcome.status = "saved"
        self.bus.emit("drop_resolved", outcome=outcome)
        await self.refresh()
        return outcome

    async def on_complete(self, move_id: int) -> bool:
        """Mark a move done; it leaves the board immediately."""
        move = self.get(move_id)
        if move is None:
            self.bus.report(NotFound(move_id))
            return False
        remaining = [m for m in self._items if m.id != move_id]
        lane = lane_view(remaining, move.lane)
        positions = {m.id: pos for pos, m in enumerate(lane)}
        self._apply_local([
            m.copy(position=positions[m.id]) if m.id in positions else m
            for m in remaining
        ])
        try:
            await self.gateway.complete_move(move_id)
        except MoveBoardError as e:
            logger.warning(f"Completing move {move_id} failed: {e}")
            await self._reconcile(e)
            return False
        self.bus.notify_info(f"Move completed: {move.title}")
        await self.refresh()
        return True

    async def on_create(self, fields: Dict[str, Any]) -> Optional[Move]:
        try:
            move = await self.gateway.create_move(fields)
        except MoveBoardError as e:
            logger.warning(f"Create failed: {e}")
            self.bus.report(e)
            return None
        await self.refresh()
        return move
