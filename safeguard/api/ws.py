"""Live location WebSocket.

Client connects with ?token=<jwt>. An access token may publish
``update-location`` for its own user and watch its own room; a guardian
tracking token (from the SOS text) may only watch the subject it was issued
for. Messages are JSON envelopes ``{"event": ..., "data": ...}``.

Client -> server: update-location, join-room, leave-room, "ping"
Server -> client: location-broadcast, location-accepted, room-joined,
room-closed, error, pong
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from safeguard.core.exceptions import SessionNotActive
from safeguard.core.security import TRACKING_SCOPE, decode_access_token
from safeguard.db.session import SessionLocal
from safeguard.models.user import User
from safeguard.schemas.sos import JoinRoomMessage, LocationSampleMessage
from safeguard.services.auth_service import get_user_by_email
from safeguard.services.location_relay import LocationSample, Subscription
from safeguard.services.sos_service import SosSessionManager

logger = logging.getLogger(__name__)

router = APIRouter()


@dataclass
class Viewer:
    """Who is on the other end of the socket."""

    user: User | None = None
    # set for guardian tracking tokens
    subject_id: int | None = None
    guardian_id: int | None = None


def _authenticate_ws(token: str) -> Viewer | None:
    """Validate JWT and return the viewer, or None."""
    payload = decode_access_token(token)
    if not payload or "sub" not in payload:
        return None
    if payload.get("scope") == TRACKING_SCOPE:
        try:
            return Viewer(subject_id=int(payload["sub"]), guardian_id=int(payload["gid"]))
        except (KeyError, TypeError, ValueError):
            return None
    db = SessionLocal()
    try:
        user = get_user_by_email(db, payload["sub"])
        if not user or not user.is_active:
            return None
        db.expunge(user)
        return Viewer(user=user)
    finally:
        db.close()


def _may_watch(manager: SosSessionManager, viewer: Viewer, subject_id: int) -> bool:
    """Subjects watch themselves; others need the tracking token from the SOS text."""
    if viewer.user is not None:
        return viewer.user.id == subject_id
    if viewer.guardian_id is None or viewer.subject_id != subject_id:
        return False
    db = SessionLocal()
    try:
        return manager.directory.can_view_live_location(db, subject_id, viewer.guardian_id)
    finally:
        db.close()


async def _send(websocket: WebSocket, event: str, data) -> None:
    await websocket.send_text(json.dumps({"event": event, "data": data}, default=str))


class LocationConnection:
    """State for one socket: its viewer identity and open rooms."""

    def __init__(self, websocket: WebSocket, manager: SosSessionManager, viewer: Viewer) -> None:
        self.websocket = websocket
        self.manager = manager
        self.viewer = viewer
        # subject_id -> (subscription, forwarding task)
        self.rooms: dict[int, tuple[Subscription, asyncio.Task]] = {}

    async def error(self, code: str, detail: str) -> None:
        await _send(self.websocket, "error", {"code": code, "detail": detail})

    async def handle(self, raw: str) -> None:
        if raw == "ping":
            await self.websocket.send_text('{"event":"pong"}')
            return
        try:
            message = json.loads(raw)
            event, data = message["event"], message.get("data") or {}
        except (ValueError, KeyError, TypeError):
            await self.error("BadMessage", "Expected {\"event\": ..., \"data\": ...}")
            return

        try:
            if event == "update-location":
                await self.update_location(LocationSampleMessage.model_validate(data))
            elif event == "join-room":
                await self.join_room(JoinRoomMessage.model_validate(data).user_id)
            elif event == "leave-room":
                self.leave_room(JoinRoomMessage.model_validate(data).user_id)
            else:
                await self.error("UnknownEvent", f"Unknown event {event!r}")
        except ValidationError as e:
            await self.error("BadMessage", str(e))

    async def update_location(self, msg: LocationSampleMessage) -> None:
        user = self.viewer.user
        if user is None or msg.user_id != user.id:
            await self.error("Forbidden", "Only the subject can publish its location")
            return
        sample = LocationSample(
            user_id=user.id,
            full_name=msg.full_name or user.full_name,
            lat=msg.lat,
            lng=msg.lng,
            accuracy=msg.accuracy,
            msg=msg.msg,
            timestamp=msg.timestamp or datetime.now(timezone.utc),
        )
        try:
            delivered = self.manager.publish(user, sample)
        except SessionNotActive as e:
            await self.error("SessionNotActive", str(e))
            return
        await _send(self.websocket, "location-accepted", {"delivered": delivered})

    async def join_room(self, subject_id: int) -> None:
        if subject_id in self.rooms:
            await _send(self.websocket, "room-joined", {"userId": subject_id})
            return
        allowed = await asyncio.to_thread(_may_watch, self.manager, self.viewer, subject_id)
        if not allowed:
            await self.error("Forbidden", "Not allowed to view this live location")
            return
        sub = self.manager.subscribe(subject_id)
        await _send(self.websocket, "room-joined", {"userId": subject_id})
        task = asyncio.create_task(self._forward(sub))
        self.rooms[subject_id] = (sub, task)

    async def _forward(self, sub: Subscription) -> None:
        """Pump one subscription to the socket, in publish order."""
        try:
            async for sample in sub:
                await _send(self.websocket, "location-broadcast", sample.to_wire())
            await _send(self.websocket, "room-closed", {"userId": sub.subject_id})
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug("Forwarding to closed socket stopped: subject=%s (%s)", sub.subject_id, e)
        finally:
            room = self.rooms.get(sub.subject_id)
            if room and room[0] is sub:
                del self.rooms[sub.subject_id]

    def leave_room(self, subject_id: int) -> None:
        room = self.rooms.pop(subject_id, None)
        if room:
            sub, task = room
            sub.close()
            task.cancel()

    def close(self) -> None:
        for subject_id in list(self.rooms):
            self.leave_room(subject_id)


@router.websocket("/ws/location")
async def location_socket(websocket: WebSocket):
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4001, reason="Missing token")
        return

    viewer = await asyncio.to_thread(_authenticate_ws, token)
    if viewer is None:
        await websocket.close(code=4003, reason="Invalid or expired token")
        return

    await websocket.accept()
    conn = LocationConnection(websocket, websocket.app.state.sos, viewer)
    logger.info("Location WS connected: user=%s subject=%s", viewer.user and viewer.user.id, viewer.subject_id)
    try:
        while True:
            raw = await websocket.receive_text()
            await conn.handle(raw)
    except WebSocketDisconnect:
        pass
    finally:
        conn.close()
        logger.info("Location WS disconnected: user=%s subject=%s", viewer.user and viewer.user.id, viewer.subject_id)
