"""Shared test fixtures for the moveboard tests."""

import sys
from pathlib import Path

import pytest

# Ensure the project root is importable
sys.path.insert(0, str(Path(__file__).parent.parent))

from moveboard.errors import NotFound  # noqa: E402
from moveboard.gateway import MoveGateway  # noqa: E402
from moveboard.schema import Lane, Move, TriageResult  # noqa: E402
from moveboard.store import MoveStore  # noqa: E402


class FakeGateway(MoveGateway):
    """
    In-memory gateway that records every call.

    `failures` maps (operation, move_id) → exception to raise once.
    Patches place the move like the real store does (dense reindex).
    """

    def __init__(self, moves=None, triage=None):
        self.moves = {m.id: m for m in (moves or [])}
        self.triage = triage
        self.calls = []
        self.failures = {}
        self.triage_error = None
        self.list_error = None
        self.online = True

    def _fail(self, op, move_id):
        error = self.failures.pop((op, move_id), None)
        if error is not None:
            raise error

    def _lane(self, lane):
        return sorted((m for m in self.moves.values() if m.lane == lane), key=lambda m: (m.position, m.id))

    async def list_moves(self, lane=None, client_id=None):
        self.calls.append(("list_moves",))
        if self.list_error is not None:
            raise self.list_error
        return [m.copy() for m in self.moves.values() if m.lane != Lane.DONE]

    async def patch_move(self, move_id, fields):
        self.calls.append(("patch_move", move_id, dict(fields)))
        self._fail("patch_move", move_id)
        if move_id not in self.moves:
            raise NotFound(move_id)
        move = self.moves[move_id]
        if "title" in fields:
            move.title = fields["title"]
        if "lane" in fields or "position" in fields:
            source = move.lane
            dest = Lane(fields.get("lane", source.value))
            others = [m for m in self._lane(dest) if m.id != move_id]
            index = min(fields.get("position", len(others)), len(others))
            move.lane = dest
            others.insert(index, move)
            for pos, m in enumerate(others):
                m.position = pos
            if source != dest:
                for pos, m in enumerate(self._lane(source)):
                    m.position = pos
        return move.copy()

    async def complete_move(self, move_id):
        self.calls.append(("complete_move", move_id))
        self._fail("complete_move", move_id)
        if move_id not in self.moves:
            raise NotFound(move_id)
        self.moves[move_id].lane = Lane.DONE

    async def run_triage(self):
        self.calls.append(("run_triage",))
        if self.triage_error is not None:
            raise self.triage_error
        return self.triage

    async def create_move(self, fields):
        self.calls.append(("create_move", dict(fields)))
        move = Move(id=max(self.moves, default=0) + 1, title=fields["title"])
        self.moves[move.id] = move
        return move.copy()

    async def health(self):
        return self.online

    def patches(self):
        return [c for c in self.calls if c[0] == "patch_move"]


def make_move(move_id, title, lane, position, **kwargs):
    return Move(id=move_id, title=title, lane=lane, position=position, **kwargs)


@pytest.fixture
def store(tmp_path):
    return MoveStore(str(tmp_path / "moves.db"))


@pytest.fixture
def empty_triage():
    return TriageResult(run_id="r0", date="2026-01-01", timestamp="2026-01-01T00:00:00+00:00")
