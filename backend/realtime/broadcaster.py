"""
WebSocket room broadcaster.

Each connection may join any number of project rooms. Publishing is
at-most-once and best-effort: there is no persistence, replay or
acknowledgement, and a failed send only drops the dead connection.

Rooms follow membership: once a ``member-removed`` event has been delivered,
the removed user's connections leave that project's room, and a
``project-deleted`` event empties the deleted project's room.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Iterable, Optional, Set, TypeVar

from fastapi import BackgroundTasks, Request, WebSocket

from realtime.events import Event, EventKind, Outcome, room_name

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Broadcaster:
    """
    Room-scoped fan-out of realtime events.

    All methods run on the application's event loop. Membership sets are
    mutated synchronously and copied before any await, so no lock is needed.
    """

    def __init__(self):
        # connection -> authenticated user id
        self.connections: Dict[WebSocket, Optional[str]] = {}
        self.rooms: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, user_id: Optional[str] = None) -> None:
        """Accept a new connection and register it under its user."""
        await websocket.accept()
        self.connections[websocket] = user_id
        logger.info(f"WebSocket connected. Total connections: {len(self.connections)}")

    def disconnect(self, websocket: WebSocket) -> None:
        """Forget a connection and implicitly leave every room it joined."""
        self.connections.pop(websocket, None)
        for room in list(self.rooms):
            self._leave(websocket, room)
        logger.info(f"WebSocket disconnected. Total connections: {len(self.connections)}")

    def join_room(self, websocket: WebSocket, project_id: str) -> str:
        room = room_name(project_id)
        self.rooms.setdefault(room, set()).add(websocket)
        logger.debug(f"Connection joined {room} ({len(self.rooms[room])} subscribers)")
        return room

    def leave_room(self, websocket: WebSocket, project_id: str) -> str:
        room = room_name(project_id)
        self._leave(websocket, room)
        logger.debug(f"Connection left {room}")
        return room

    def _leave(self, websocket: WebSocket, room: str) -> None:
        members = self.rooms.get(room)
        if members is None:
            return
        members.discard(websocket)
        if not members:
            del self.rooms[room]

    def room_members(self, project_id: str) -> Set[WebSocket]:
        return set(self.rooms.get(room_name(project_id), ()))

    def get_connection_count(self) -> int:
        return len(self.connections)

    def evict_user(self, project_id: str, user_id: str) -> int:
        """Remove every connection of a user from a project's room. Returns how many left."""
        room = room_name(project_id)
        evicted = [ws for ws in self.rooms.get(room, ()) if self.connections.get(ws) == user_id]
        for websocket in evicted:
            self._leave(websocket, room)
        if evicted:
            logger.info(f"Evicted {len(evicted)} connection(s) of user {user_id} from {room}")
        return len(evicted)

    def close_room(self, project_id: str) -> None:
        room = room_name(project_id)
        if self.rooms.pop(room, None) is not None:
            logger.info(f"Closed {room}")

    async def publish(self, room: str, event: Event) -> int:
        """Send an event to every connection in a room. Returns the delivered count."""
        targets = set(self.rooms.get(room, ()))
        return await self._send_all(targets, event.to_message())

    async def publish_global(self, event: Event) -> int:
        targets = set(self.connections)
        return await self._send_all(targets, event.to_message())

    async def publish_all(self, events: Iterable[Event]) -> None:
        """
        Dispatch events produced by a service call.

        Never raises: the write that produced the events is already committed.
        """
        for event in events:
            try:
                if event.room is None:
                    delivered = await self.publish_global(event)
                else:
                    delivered = await self.publish(event.room, event)
                logger.debug(f"Published {event.kind.value} to {event.room or 'all'}: {delivered} delivered")
            except Exception:
                logger.exception(f"Failed to publish {event.kind.value}")
            self._apply_membership_change(event)

    def _apply_membership_change(self, event: Event) -> None:
        if event.kind == EventKind.member_removed:
            self.evict_user(event.data["project_id"], event.data["user_id"])
        elif event.kind == EventKind.project_deleted:
            self.close_room(event.data["id"])

    async def _send_all(self, targets: Set[WebSocket], message: Dict[str, Any]) -> int:
        if not targets:
            return 0
        text = json.dumps(message, default=str)
        results = await asyncio.gather(
            *(self._send_safe(websocket, text) for websocket in targets), return_exceptions=True
        )
        return sum(1 for result in results if result is True)

    async def _send_safe(self, websocket: WebSocket, text: str) -> bool:
        try:
            await websocket.send_text(text)
            return True
        except Exception as e:
            logger.warning(f"Failed to send message to WebSocket, dropping connection: {e}")
            self.disconnect(websocket)
            return False


def get_broadcaster(request: Request) -> Broadcaster:
    return request.app.state.broadcaster


def publish_after_response(background_tasks: BackgroundTasks, broadcaster: Broadcaster, outcome: Outcome[T]) -> T:
    """Queue an outcome's events for delivery once the response is sent; return its value."""
    if outcome.events:
        background_tasks.add_task(broadcaster.publish_all, outcome.events)
    return outcome.value
