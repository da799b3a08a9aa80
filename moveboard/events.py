"""
Event bus: carries board and triage state changes to the view layer.

Event types:
    notification       — Notification (toast / inline / retry)
    board_refreshed    — items=list[Move]
    drop_resolved      — outcome=DropOutcome
    triage_refreshed   — result=TriageResult | None, fetching=bool
    rewrites_applied   — outcome=ApplyOutcome
    connectivity       — online=bool
"""
import logging
from dataclasses import dataclass
from typing import Optional, Dict, Callable, List

from .errors import MoveBoardError, ValidationError, NotFound, TriageUnavailable

logger = logging.getLogger(__name__)

TOAST = "toast"
INLINE = "inline"
RETRY = "retry"


@dataclass(frozen=True)
class Notification:
    """A user-visible message."""
    kind: str                    # "toast" | "inline" | "retry"
    message: str
    level: str = "error"         # "info" | "error"
    field: Optional[str] = None  # inline only: control to attach to
    move_id: Optional[int] = None


def notification_for(error: MoveBoardError) -> Notification:
    """Map an error to where it should appear."""
    if isinstance(error, ValidationError):
        return Notification(kind=INLINE, message=str(error), field=error.field)
    if isinstance(error, TriageUnavailable):
        return Notification(kind=RETRY, message=str(error) or "Triage unavailable")
    if isinstance(error, NotFound):
        return Notification(kind=TOAST, message=str(error), move_id=error.move_id)
    return Notification(kind=TOAST, message=str(error) or "Network error")


class EventBus:
    """Routes engine events to subscribed view callbacks."""

    def __init__(self):
        self.subscribers: Dict[str, List[Callable]] = {}  # event_type -> callbacks

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """Register a callback for an event type."""
        if event_type not in self.subscribers:
            self.subscribers[event_type] = []
        self.subscribers[event_type].append(callback)

    def unsubscribe(self, event_type: str, callback: Callable) -> None:
        callbacks = self.subscribers.get(event_type, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def emit(self, event_type: str, **kwargs) -> None:
        """Emit an event to all subscribers. A failing view callback never breaks the engine."""
        for callback in self.subscribers.get(event_type, []):
            try:
                callback(**kwargs)
            except Exception:
                logger.exception(f"Error in {event_type} callback")

    def notify(self, notification: Notification) -> None:
        self.emit("notification", notification=notification)

    def notify_info(self, message: str) -> None:
        self.notify(Notification(kind=TOAST, message=message, level="info"))

    def report(self, error: MoveBoardError) -> Notification:
        """Convert an error into a notification and emit it."""
        notification = notification_for(error)
        self.notify(notification)
        return notification
