"""
WebSocket endpoint for realtime project updates.

Clients connect to ``/ws?token=<jwt>`` and then send JSON messages:

    {"type": "join-project", "projectId": "<id>"}
    {"type": "leave-project", "projectId": "<id>"}

Only members of a project may join its room. Every server event has the
shape ``{"type", "projectId", "data", "actorId", "timestamp"}``.
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from auth.dependencies import resolve_user
from auth.permissions import MembershipAuthority
from errors import DomainError
from realtime.broadcaster import Broadcaster

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


async def _reply_error(websocket: WebSocket, message: str, project_id: Optional[str] = None) -> None:
    await websocket.send_json({"type": "error", "projectId": project_id, "data": {"message": message}})


@router.websocket("/ws")
async def realtime_updates(websocket: WebSocket, token: Optional[str] = None):
    """Authenticate, then serve join/leave requests until the client goes away."""
    broadcaster: Broadcaster = websocket.app.state.broadcaster
    database = websocket.app.state.database

    try:
        with database.session_scope() as db:
            user = resolve_user(token, db)
            user_id = user.id
    except DomainError as e:
        logger.info(f"WebSocket authentication failed: {e.detail}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.detail)
        return

    await broadcaster.connect(websocket, user_id)
    logger.info(f"User {user_id} connected to realtime updates")
    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", status.WS_1000_NORMAL_CLOSURE))
            raw = frame.get("text")
            if raw is None:
                await _reply_error(websocket, "Malformed message")
                continue
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                await _reply_error(websocket, "Malformed message")
                continue
            if not isinstance(message, dict):
                await _reply_error(websocket, "Malformed message")
                continue

            kind = message.get("type")
            project_id = message.get("projectId")
            if not project_id:
                await _reply_error(websocket, "projectId is required")
                continue
            project_id = str(project_id)

            if kind == "join-project":
                with database.session_scope() as db:
                    allowed = MembershipAuthority(db).is_member(project_id, user_id)
                if not allowed:
                    logger.info(f"User {user_id} refused entry to room of project {project_id}")
                    await _reply_error(websocket, "Access denied - not a project member", project_id)
                    continue
                broadcaster.join_room(websocket, project_id)
                await websocket.send_json({"type": "joined-project", "projectId": project_id})
            elif kind == "leave-project":
                broadcaster.leave_room(websocket, project_id)
                await websocket.send_json({"type": "left-project", "projectId": project_id})
            else:
                await _reply_error(websocket, f"Unknown message type: {kind}", project_id)
    except WebSocketDisconnect:
        logger.debug(f"User {user_id} closed the realtime connection")
    finally:
        broadcaster.disconnect(websocket)
