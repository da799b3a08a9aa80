"""
Error taxonomy shared by the store, the gateways and the client-side engines.

    ValidationError    — malformed or missing field (shown inline)
    NotFound           — move vanished server-side (toast + full refetch)
    NetworkError       — transport failure or timeout (toast + background refetch)
    TriageUnavailable  — triage run failed (retry affordance, no partial state)
"""
from typing import Optional


class MoveBoardError(Exception):
    """Base class for every failure the board surfaces to the user."""
    pass


class ValidationError(MoveBoardError):
    """Raised when fields violate the move schema (e.g. empty title)."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFound(MoveBoardError):
    """Raised when a move id is unknown to the durable store."""

    def __init__(self, move_id: int, message: str = ""):
        super().__init__(message or f"Move {move_id} not found")
        self.move_id = move_id


class NetworkError(MoveBoardError):
    """Raised when the durable store cannot be reached."""
    pass


class TriageUnavailable(MoveBoardError):
    """Raised when a triage run cannot be computed or fetched."""
    pass
