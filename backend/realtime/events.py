"""
Realtime event contract shared by the services and the WebSocket clients.

Services never publish anything themselves. A mutating service call returns an
``Outcome`` holding its result and the events describing the committed change;
the HTTP boundary hands those events to the ``Broadcaster`` after the response
is produced.
"""

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Optional, TypeVar

from time_utils import utc_now

T = TypeVar("T")


class EventKind(str, enum.Enum):
    task_created = "task-created"
    task_updated = "task-updated"
    task_deleted = "task-deleted"
    comment_added = "comment-added"
    comment_updated = "comment-updated"
    comment_deleted = "comment-deleted"
    project_created = "project-created"
    project_updated = "project-updated"
    project_deleted = "project-deleted"
    member_added = "member-added"
    member_removed = "member-removed"


def room_name(project_id: str) -> str:
    return f"project-{project_id}"


def to_payload(schema, obj) -> Dict[str, Any]:
    """Serialize an ORM object through a response schema into JSON-safe data."""
    return schema.model_validate(obj).model_dump(mode="json")


@dataclass(frozen=True)
class Event:
    kind: EventKind
    data: Dict[str, Any]
    actor_id: str
    # None means the event goes to every connection, not a single room
    project_id: Optional[str] = None

    @property
    def room(self) -> Optional[str]:
        return room_name(self.project_id) if self.project_id is not None else None

    def to_message(self) -> Dict[str, Any]:
        return {
            "type": self.kind.value,
            "projectId": self.project_id,
            "data": self.data,
            "actorId": self.actor_id,
            "timestamp": utc_now().isoformat(),
        }


@dataclass
class Outcome(Generic[T]):
    value: T
    events: List[Event] = field(default_factory=list)
