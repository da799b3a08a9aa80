"""
Move schema and lane vocabulary.

Lane lifecycle:
  Backlog → Queued → Active → Done

Drag moves may jump between any of the three board lanes in either
direction. Done is terminal and drops the move off the board.
"""
from enum import Enum
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from .errors import ValidationError


class Lane(Enum):
    """Lanes a move can live in."""
    ACTIVE = "active"        # Today
    QUEUED = "queued"        # Up next
    BACKLOG = "backlog"      # Later
    DONE = "done"            # Completed, off the board

    @classmethod
    def from_str(cls, value: str) -> "Lane":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(f"Invalid lane: {value}", field="lane")

    def promoted(self) -> Optional["Lane"]:
        """The next lane towards Active, or None if already at the top."""
        return {Lane.BACKLOG: Lane.QUEUED, Lane.QUEUED: Lane.ACTIVE}.get(self)

    def demoted(self) -> Optional["Lane"]:
        """The next lane towards Backlog, or None if already at the bottom."""
        return {Lane.ACTIVE: Lane.QUEUED, Lane.QUEUED: Lane.BACKLOG}.get(self)


# Lanes rendered on the board, in display order
BOARD_LANES = (Lane.ACTIVE, Lane.QUEUED, Lane.BACKLOG)
LANE_ORDER = {lane: i for i, lane in enumerate(BOARD_LANES + (Lane.DONE,))}


class DrainType(Enum):
    """What kind of energy a move drains."""
    DEEP = "deep"
    COMMS = "comms"
    ADMIN = "admin"
    CREATIVE = "creative"
    EASY = "easy"

    @classmethod
    def normalize(cls, value: Any) -> Optional["DrainType"]:
        """Case-insensitive parse; unknown or empty values become None."""
        if value is None or isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


EFFORT_LEVELS = [
    {"value": 1, "label": "Quick"},
    {"value": 2, "label": "Medium"},
    {"value": 3, "label": "Heavy"},
    {"value": 4, "label": "Marathon"},
]
EFFORT_MIN = 1
EFFORT_MAX = 4


def validate_title(title: Any) -> str:
    """Return the stripped title or raise ValidationError."""
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("title is required", field="title")
    return title.strip()


def validate_effort(effort: Any) -> Optional[int]:
    if effort is None:
        return None
    if isinstance(effort, bool) or not isinstance(effort, int):
        raise ValidationError("effort_estimate must be an integer", field="effort_estimate")
    if not EFFORT_MIN <= effort <= EFFORT_MAX:
        raise ValidationError(
            f"effort_estimate must be between {EFFORT_MIN} and {EFFORT_MAX}",
            field="effort_estimate",
        )
    return effort


def validate_drain(drain: Any) -> Optional[DrainType]:
    if drain is None or drain == "":
        return None
    normalized = DrainType.normalize(drain)
    if normalized is None:
        raise ValidationError(f"Invalid drain_type: {drain}", field="drain_type")
    return normalized


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class Move:
    """A client's work item."""

    id: int
    title: str
    description: str = ""

    # Ownership
    client_id: Optional[int] = None
    client_name: str = ""

    # Board placement
    lane: Lane = Lane.BACKLOG
    position: int = 0

    # Sizing
    effort_estimate: Optional[int] = None
    drain_type: Optional[DrainType] = None

    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.lane != Lane.DONE

    def copy(self, **changes) -> "Move":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "client_id": self.client_id,
            "client_name": self.client_name,
            "lane": self.lane.value,
            "position": self.position,
            "effort_estimate": self.effort_estimate,
            "drain_type": self.drain_type.value if self.drain_type else None,
            "created_at": self.created_at.isoformat() if isinstance(self.created_at, datetime) else self.created_at,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Move":
        lane = Lane.BACKLOG
        if data.get("lane"):
            try:
                lane = Lane(data["lane"])
            except ValueError:
                lane = Lane.BACKLOG

        return cls(
            id=int(data["id"]),
            title=data.get("title", ""),
            description=data.get("description") or "",
            client_id=data.get("client_id"),
            client_name=data.get("client_name") or "",
            lane=lane,
            position=int(data.get("position") or 0),
            effort_estimate=data.get("effort_estimate"),
            drain_type=DrainType.normalize(data.get("drain_type")),
            created_at=_parse_dt(data.get("created_at")) or datetime.now(timezone.utc),
            completed_at=_parse_dt(data.get("completed_at")),
        )


@dataclass
class Client:
    """A client whose pipeline the board tracks."""
    id: int
    name: str
    archived: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "archived": self.archived}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Client":
        return cls(id=int(data["id"]), name=data.get("name", ""), archived=bool(data.get("archived", False)))


@dataclass(frozen=True)
class DragOperation:
    """One drop gesture: where the move came from and where it landed."""
    source_lane: Lane
    source_index: int
    destination_lane: Lane
    destination_index: int
    move_id: int

    @property
    def is_noop(self) -> bool:
        return (
            self.source_lane == self.destination_lane
            and self.source_index == self.destination_index
        )


@dataclass(frozen=True)
class RewriteCandidate:
    """A suggested replacement title for a move. Keyed by the move id."""
    move_id: int
    original_title: str
    client_name: str
    suggested_title: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "move_id": self.move_id,
            "original_title": self.original_title,
            "client_name": self.client_name,
            "suggested_title": self.suggested_title,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RewriteCandidate":
        return cls(
            move_id=int(data["move_id"]),
            original_title=data.get("original_title", ""),
            client_name=data.get("client_name", ""),
            suggested_title=data.get("suggested_title", ""),
        )


PROMOTE = "promote"
FILL_FIELD = "fill_field"


@dataclass(frozen=True)
class AutoAction:
    """A correction a triage run already applied to the durable store."""
    kind: str                        # "promote" | "fill_field"
    move_id: int
    title: str
    client_name: str = ""
    from_lane: Optional[str] = None  # promote only
    to_lane: Optional[str] = None    # promote only
    field: Optional[str] = None      # fill_field only
    value: Any = None                # fill_field only

    def describe(self) -> str:
        if self.kind == PROMOTE:
            return f'"{self.title}" ({self.from_lane} → {self.to_lane})'
        return f'"{self.title}" {self.field} = {self.value}'

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "move_id": self.move_id,
            "title": self.title,
            "client_name": self.client_name,
            "from_lane": self.from_lane,
            "to_lane": self.to_lane,
            "field": self.field,
            "value": self.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AutoAction":
        return cls(
            kind=data.get("kind", ""),
            move_id=int(data["move_id"]),
            title=data.get("title", ""),
            client_name=data.get("client_name", ""),
            from_lane=data.get("from_lane"),
            to_lane=data.get("to_lane"),
            field=data.get("field"),
            value=data.get("value"),
        )


@dataclass
class PipelineHealth:
    total_clients: int = 0
    healthy_clients: int = 0
    clients_with_issues: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_clients": self.total_clients,
            "healthy_clients": self.healthy_clients,
            "clients_with_issues": self.clients_with_issues,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineHealth":
        return cls(
            total_clients=data.get("total_clients", 0),
            healthy_clients=data.get("healthy_clients", 0),
            clients_with_issues=list(data.get("clients_with_issues", [])),
        )


@dataclass
class TriageResult:
    """Output of one triage run."""
    run_id: str
    date: str
    timestamp: str
    auto_actions: List[AutoAction] = field(default_factory=list)
    rewrite_candidates: List[RewriteCandidate] = field(default_factory=list)
    pipeline_health: PipelineHealth = field(default_factory=PipelineHealth)

    @property
    def summary(self) -> Dict[str, Any]:
        pipeline_issues = len(self.pipeline_health.clients_with_issues)
        total = pipeline_issues + len(self.rewrite_candidates)
        return {
            "total_issues": total,
            "pipeline_issue_count": pipeline_issues,
            "rewrite_count": len(self.rewrite_candidates),
            "auto_action_count": len(self.auto_actions),
            "is_healthy": total == 0,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "date": self.date,
            "timestamp": self.timestamp,
            "auto_actions": [a.to_dict() for a in self.auto_actions],
            "rewrite_candidates": [c.to_dict() for c in self.rewrite_candidates],
            "pipeline_health": self.pipeline_health.to_dict(),
            "summary": self.summary,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TriageResult":
        return cls(
            run_id=data.get("run_id", ""),
            date=data.get("date", ""),
            timestamp=data.get("timestamp", ""),
            auto_actions=[AutoAction.from_dict(a) for a in data.get("auto_actions", [])],
            rewrite_candidates=[RewriteCandidate.from_dict(c) for c in data.get("rewrite_candidates", [])],
            pipeline_health=PipelineHealth.from_dict(data.get("pipeline_health", {})),
        )
