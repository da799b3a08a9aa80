"""
Move storage backend (SQLite).

Durable side of the board: CRUD for moves and clients plus the
server-side dense reindexing that keeps each lane's positions 0..n-1.
"""
import logging
import sqlite3
from pathlib import Path
from typing import List, Optional, Dict, Any, Iterable
from datetime import datetime, timezone

from .errors import ValidationError, NotFound
from .schema import (
    Move, Client, Lane, BOARD_LANES,
    validate_title, validate_effort, validate_drain,
)

logger = logging.getLogger(__name__)

PATCHABLE_FIELDS = (
    "title", "description", "client_id", "lane", "position",
    "effort_estimate", "drain_type",
)

_LANE_SORT = """
    CASE m.lane
        WHEN 'active' THEN 0
        WHEN 'queued' THEN 1
        WHEN 'backlog' THEN 2
        ELSE 3
    END
"""


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection with FK enforcement and WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class MoveStore:
    """SQLite-backed store for moves and clients."""

    def __init__(self, db_path: str = None):
        """Initialize store and create tables if needed."""
        if db_path is None:
            db_path = str(Path.home() / ".local" / "share" / "moveboard" / "moves.db")
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self):
        """Create tables if they don't exist."""
        with _connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS clients (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    archived INTEGER DEFAULT 0,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS moves (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    client_id INTEGER,
                    lane TEXT NOT NULL DEFAULT 'backlog',
                    position INTEGER NOT NULL DEFAULT 0,
                    effort_estimate INTEGER,
                    drain_type TEXT,
                    created_at TEXT NOT NULL,
                    completed_at TEXT,
                    FOREIGN KEY (client_id) REFERENCES clients(id)
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_moves_lane ON moves(lane, position)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_moves_client ON moves(client_id)")
            conn.commit()

    # ── Clients ──────────────────────────────────────────────────────────────

    def create_client(self, name: str) -> Client:
        name = (name or "").strip()
        if not name:
            raise ValidationError("name is required", field="name")
        with _connect(self.db_path) as conn:
            try:
                cur = conn.execute(
                    "INSERT INTO clients (name, created_at) VALUES (?, ?)",
                    (name, _now()),
                )
            except sqlite3.IntegrityError:
                raise ValidationError(f"Client {name!r} already exists", field="name")
            conn.commit()
            return Client(id=cur.lastrowid, name=name)

    def list_clients(self, include_archived: bool = False) -> List[Client]:
        query = "SELECT * FROM clients"
        if not include_archived:
            query += " WHERE archived = 0"
        with _connect(self.db_path) as conn:
            rows = conn.execute(query + " ORDER BY name COLLATE NOCASE").fetchall()
        return [Client(id=r["id"], name=r["name"], archived=bool(r["archived"])) for r in rows]

    def _require_client(self, conn: sqlite3.Connection, client_id: Any) -> Optional[int]:
        if client_id is None:
            return None
        row = conn.execute("SELECT id FROM clients WHERE id = ?", (client_id,)).fetchone()
        if not row:
            raise ValidationError(f"Unknown client: {client_id}", field="client_id")
        return row["id"]

    # ── Reads ────────────────────────────────────────────────────────────────

    def get(self, move_id: int) -> Move:
        """Retrieve a move by id. Raises NotFound."""
        with _connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT m.*, c.name AS client_name FROM moves m "
                "LEFT JOIN clients c ON c.id = m.client_id WHERE m.id = ?",
                (move_id,),
            ).fetchone()
        if not row:
            raise NotFound(move_id)
        return self._row_to_move(row)

    def list_moves(
        self,
        lane: Optional[Lane] = None,
        client_id: Optional[int] = None,
        include_completed: bool = False,
    ) -> List[Move]:
        """List moves ordered by lane, then position."""
        clauses, params = [], []
        if lane is not None:
            clauses.append("m.lane = ?")
            params.append(lane.value)
        elif not include_completed:
            clauses.append("m.lane != 'done'")
        if client_id is not None:
            clauses.append("m.client_id = ?")
            params.append(client_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with _connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT m.*, c.name AS client_name FROM moves m "
                f"LEFT JOIN clients c ON c.id = m.client_id {where} "
                f"ORDER BY {_LANE_SORT}, m.position, m.id",
                params,
            ).fetchall()
        return [self._row_to_move(r) for r in rows]

    # ── Writes ───────────────────────────────────────────────────────────────

    def create_move(self, fields: Dict[str, Any]) -> Move:
        """Create a move, appended to the end of its lane (backlog by default)."""
        title = validate_title(fields.get("title"))
        lane = Lane.from_str(fields.get("lane") or Lane.BACKLOG.value)
        if lane not in BOARD_LANES:
            raise ValidationError("New moves must start on the board", field="lane")
        effort = validate_effort(fields.get("effort_estimate"))
        drain = validate_drain(fields.get("drain_type"))

        with _connect(self.db_path) as conn:
            client_id = self._require_client(conn, fields.get("client_id"))
            position = len(self._lane_ids(conn, lane))
            cur = conn.execute(
                """
                INSERT INTO moves
                (title, description, client_id, lane, position, effort_estimate, drain_type, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    title,
                    fields.get("description") or "",
                    client_id,
                    lane.value,
                    position,
                    effort,
                    drain.value if drain else None,
                    _now(),
                ),
            )
            conn.commit()
            move_id = cur.lastrowid
        return self.get(move_id)

    def patch_move(self, move_id: int, fields: Dict[str, Any]) -> Move:
        """
        Apply a partial update.

        A lane and/or position change removes the move from its lane, inserts
        it at `position` in the destination lane (end of lane when omitted)
        and rewrites both lanes to dense 0..n-1 positions.
        """
        unknown = set(fields) - set(PATCHABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

        updates: Dict[str, Any] = {}
        if "title" in fields:
            updates["title"] = validate_title(fields["title"])
        if "description" in fields:
            updates["description"] = fields["description"] or ""
        if "effort_estimate" in fields:
            updates["effort_estimate"] = validate_effort(fields["effort_estimate"])
        if "drain_type" in fields:
            drain = validate_drain(fields["drain_type"])
            updates["drain_type"] = drain.value if drain else None

        new_lane = Lane.from_str(fields["lane"]) if fields.get("lane") is not None else None
        position = fields.get("position")
        if position is not None and (isinstance(position, bool) or not isinstance(position, int) or position < 0):
            raise ValidationError("position must be a non-negative integer", field="position")

        with _connect(self.db_path) as conn:
            row = conn.execute("SELECT lane FROM moves WHERE id = ?", (move_id,)).fetchone()
            if not row:
                raise NotFound(move_id)
            if "client_id" in fields:
                updates["client_id"] = self._require_client(conn, fields["client_id"])

            if updates:
                assignments = ", ".join(f"{col} = ?" for col in updates)
                conn.execute(
                    f"UPDATE moves SET {assignments} WHERE id = ?",
                    (*updates.values(), move_id),
                )

            current_lane = Lane(row["lane"])
            if new_lane is not None or position is not None:
                self._place(conn, move_id, current_lane, new_lane or current_lane, position)
                if new_lane == Lane.DONE and current_lane != Lane.DONE:
                    conn.execute("UPDATE moves SET completed_at = ? WHERE id = ?", (_now(), move_id))
            conn.commit()
        return self.get(move_id)

    def complete_move(self, move_id: int) -> Move:
        """Transition a move to done and close the gap it leaves behind."""
        with _connect(self.db_path) as conn:
            row = conn.execute("SELECT lane FROM moves WHERE id = ?", (move_id,)).fetchone()
            if not row:
                raise NotFound(move_id)
            current_lane = Lane(row["lane"])
            if current_lane != Lane.DONE:
                self._place(conn, move_id, current_lane, Lane.DONE, None)
                conn.execute(
                    "UPDATE moves SET completed_at = ? WHERE id = ?",
                    (_now(), move_id),
                )
            conn.commit()
        return self.get(move_id)

    def promote_move(self, move_id: int) -> Move:
        """Move one lane towards Active, appended at the end."""
        move = self.get(move_id)
        target = move.lane.promoted()
        if target is None:
            raise ValidationError(f"Cannot promote a move in {move.lane.value}", field="lane")
        return self.patch_move(move_id, {"lane": target.value})

    def demote_move(self, move_id: int) -> Move:
        """Move one lane towards Backlog, appended at the end."""
        move = self.get(move_id)
        target = move.lane.demoted()
        if target is None:
            raise ValidationError(f"Cannot demote a move in {move.lane.value}", field="lane")
        return self.patch_move(move_id, {"lane": target.value})

    def reorder(self, lane: Lane, ordered_ids: Iterable[int]) -> List[Move]:
        """
        Rewrite a lane's order. Ids listed come first in the given order;
        any lane members left out keep their relative order after them.
        """
        if lane not in BOARD_LANES:
            raise ValidationError(f"Cannot reorder {lane.value}", field="lane")
        ordered_ids = [int(i) for i in ordered_ids]
        if len(set(ordered_ids)) != len(ordered_ids):
            raise ValidationError("ordered_ids contains duplicates")
        with _connect(self.db_path) as conn:
            current = self._lane_ids(conn, lane)
            strangers = [i for i in ordered_ids if i not in current]
            if strangers:
                raise ValidationError(
                    f"Moves not in {lane.value}: {', '.join(map(str, strangers))}"
                )
            rest = [i for i in current if i not in ordered_ids]
            self._reindex(conn, ordered_ids + rest)
            conn.commit()
        return self.list_moves(lane=lane)

    def delete_move(self, move_id: int) -> None:
        with _connect(self.db_path) as conn:
            row = conn.execute("SELECT lane FROM moves WHERE id = ?", (move_id,)).fetchone()
            if not row:
                raise NotFound(move_id)
            conn.execute("DELETE FROM moves WHERE id = ?", (move_id,))
            self._reindex(conn, self._lane_ids(conn, Lane(row["lane"])))
            conn.commit()

    # ── Ordering helpers ─────────────────────────────────────────────────────

    def _lane_ids(self, conn: sqlite3.Connection, lane: Lane) -> List[int]:
        rows = conn.execute(
            "SELECT id FROM moves WHERE lane = ? ORDER BY position, id",
            (lane.value,),
        ).fetchall()
        return [r["id"] for r in rows]

    def _reindex(self, conn: sqlite3.Connection, ordered_ids: List[int]) -> None:
        conn.executemany(
            "UPDATE moves SET position = ? WHERE id = ?",
            [(pos, mid) for pos, mid in enumerate(ordered_ids)],
        )

    def _place(
        self,
        conn: sqlite3.Connection,
        move_id: int,
        source: Lane,
        destination: Lane,
        position: Optional[int],
    ) -> None:
        """Insert move_id into destination at position and densely reindex."""
        dest_ids = [i for i in self._lane_ids(conn, destination) if i != move_id]
        index = len(dest_ids) if position is None else min(position, len(dest_ids))
        dest_ids.insert(index, move_id)
        conn.execute("UPDATE moves SET lane = ? WHERE id = ?", (destination.value, move_id))
        self._reindex(conn, dest_ids)
        if source != destination:
            self._reindex(conn, [i for i in self._lane_ids(conn, source) if i != move_id])
        logger.debug(f"Placed move {move_id}: {source.value} → {destination.value}[{index}]")

    def _row_to_move(self, row: sqlite3.Row) -> Move:
        """Convert a database row to a Move object."""
        data = dict(row)
        return Move.from_dict(data)
