"""
Data-access contract consumed by the board and the triage workflow.

    list_moves(lane?, client_id?) → list[Move]
    patch_move(id, fields)        → Move            NotFound, ValidationError
    complete_move(id)             → None            NotFound
    run_triage()                  → TriageResult    TriageUnavailable
    create_move(fields)           → Move            ValidationError

Every method is a coroutine so the engines never block on the store.
Transport failures surface as NetworkError.
"""
import asyncio
import logging
import sqlite3
from typing import Any, Dict, List, Optional

from .errors import NetworkError, TriageUnavailable
from .pipeline import RewriteSuggester, run_triage
from .schema import Lane, Move, TriageResult
from .store import MoveStore

logger = logging.getLogger(__name__)


class MoveGateway:
    """Abstract async access to the durable move store."""

    async def list_moves(self, lane: Optional[Lane] = None, client_id: Optional[int] = None) -> List[Move]:
        raise NotImplementedError

    async def patch_move(self, move_id: int, fields: Dict[str, Any]) -> Move:
        raise NotImplementedError

    async def complete_move(self, move_id: int) -> None:
        raise NotImplementedError

    async def run_triage(self) -> TriageResult:
        raise NotImplementedError

    async def create_move(self, fields: Dict[str, Any]) -> Move:
        raise NotImplementedError

    async def health(self) -> bool:
        return True


class StoreGateway(MoveGateway):
    """In-process binding: runs MoveStore calls on a worker thread."""

    def __init__(self, store: MoveStore, suggester: Optional[RewriteSuggester] = None):
        self.store = store
        self.suggester = suggester

    async def _call(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.Error as e:
            logger.error(f"Store error in {fn.__name__}: {e}")
            raise NetworkError(f"Store unavailable: {e}") from e

    async def list_moves(self, lane: Optional[Lane] = None, client_id: Optional[int] = None) -> List[Move]:
        return await self._call(self.store.list_moves, lane, client_id)

    async def patch_move(self, move_id: int, fields: Dict[str, Any]) -> Move:
        return await self._call(self.store.patch_move, move_id, dict(fields))

    async def complete_move(self, move_id: int) -> None:
        await self._call(self.store.complete_move, move_id)

    async def run_triage(self) -> TriageResult:
        try:
            return await self._call(run_triage, self.store, self.suggester)
        except NetworkError as e:
            raise TriageUnavailable(str(e)) from e
        except Exception as e:
            logger.exception("Triage run failed")
            raise TriageUnavailable(f"Triage failed: {e}") from e

    async def create_move(self, fields: Dict[str, Any]) -> Move:
        return await self._call(self.store.create_move, dict(fields))

    async def health(self) -> bool:
        try:
            await self._call(self.store.list_clients)
        except NetworkError:
            return False
        return True
