"""SOS session state machine.

    idle -> triggered -> streaming -> resolved -> (triggered ...)

``trigger`` validates the guardian directory and the rate limit, persists the
alert and hands the notification dispatch to a scheduler so the caller is
acknowledged without waiting on delivery. The first published sample moves
the session to ``streaming``; ``resolve`` ends the episode and closes every
viewer of the subject.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from safeguard.core.config import settings
from safeguard.core.exceptions import NoGuardians, SessionNotActive
from safeguard.core.rate_limit import SlidingWindowLimiter
from safeguard.core.security import create_tracking_token
from safeguard.core.sos_policies import AUDIT_SOS_RESOLVED, AUDIT_SOS_TRIGGERED, SOS_RATE_LIMIT, SOS_RATE_WINDOW_SECONDS
from safeguard.models.audit_entry import AuditEntry
from safeguard.models.user import User
from safeguard.services.guardian_service import GuardianDirectory
from safeguard.services.location_relay import LocationRelay, LocationSample, Subscription
from safeguard.services.notification_service import (
    AlertPayload,
    DispatchReport,
    GuardianContact,
    NotificationDispatcher,
)

logger = logging.getLogger(__name__)

Scheduler = Callable[[Callable[[], Awaitable[None]]], None]


class SosState(str, enum.Enum):
    IDLE = "idle"
    TRIGGERED = "triggered"
    STREAMING = "streaming"
    RESOLVED = "resolved"


ACTIVE_STATES = frozenset({SosState.TRIGGERED, SosState.STREAMING})


@dataclass
class SosSession:
    """In-memory state of one user's SOS episode."""

    user_id: int
    state: SosState = SosState.IDLE
    started_at: datetime | None = None
    lat: float | None = None
    lng: float | None = None
    accuracy: float | None = None
    location_at: datetime | None = None
    last_report: DispatchReport | None = None

    @property
    def active(self) -> bool:
        return self.state in ACTIVE_STATES

    def move_to(self, state: SosState) -> None:
        if state is not self.state:
            logger.info("SOS session user=%s: %s -> %s", self.user_id, self.state.value, state.value)
            self.state = state


@dataclass(frozen=True)
class TriggerAck:
    contacts_notified: int
    state: SosState


def tracking_link_for(subject_id: int) -> Callable[[GuardianContact], str]:
    def build(guardian: GuardianContact) -> str:
        return f"{settings.tracking_base_url}?token={create_tracking_token(subject_id, guardian.id)}"

    return build


class SosSessionManager:
    """Owns every user's SOS session and the collaborators they drive."""

    def __init__(
        self,
        directory: GuardianDirectory,
        dispatcher: NotificationDispatcher,
        relay: LocationRelay,
        limiter: SlidingWindowLimiter | None = None,
    ) -> None:
        self.directory = directory
        self.dispatcher = dispatcher
        self.relay = relay
        self.limiter = limiter or SlidingWindowLimiter(SOS_RATE_LIMIT, SOS_RATE_WINDOW_SECONDS)
        self._sessions: dict[int, SosSession] = {}
        # dispatch tasks started by _schedule, held until done
        self._pending: set[asyncio.Task] = set()

    def session_for(self, user: User) -> SosSession:
        """Current session; after a restart it is rebuilt from the persisted flag."""
        session = self._sessions.get(user.id)
        if session is None:
            session = SosSession(
                user_id=user.id,
                state=SosState.TRIGGERED if user.active_sos else SosState.IDLE,
                lat=user.last_latitude,
                lng=user.last_longitude,
                accuracy=user.last_accuracy,
                location_at=user.last_location_at,
            )
            self._sessions[user.id] = session
        return session

    # ---- trigger ----

    async def trigger(
        self,
        db: Session,
        user: User,
        payload: AlertPayload,
        ip: str | None = None,
        schedule: Scheduler | None = None,
    ) -> TriggerAck:
        user_id, subject_name = user.id, user.full_name
        guardians = await asyncio.to_thread(self.directory.list, db, user_id)
        if not guardians:
            raise NoGuardians("Add at least one guardian before triggering SOS")
        self.limiter.hit(user_id)

        contacts = [GuardianContact.from_model(g) for g in guardians]
        session = self.session_for(user)
        await asyncio.to_thread(self._persist_trigger, db, user, payload, ip)

        if not session.active:
            session.started_at = datetime.now(timezone.utc)
            self.relay.open_subject(user_id)
        session.lat, session.lng, session.accuracy = payload.lat, payload.lng, payload.accuracy
        session.location_at = payload.timestamp
        if session.state is not SosState.STREAMING:
            session.move_to(SosState.TRIGGERED)

        logger.warning("SOS triggered: user=%s guardians=%s", user_id, len(contacts))
        job = self._dispatch_job(session, contacts, payload, subject_name)
        (schedule or self._schedule)(job)
        return TriggerAck(contacts_notified=len(contacts), state=session.state)

    def _schedule(self, job: Callable[[], Awaitable[None]]) -> None:
        """Run a dispatch on the current loop when no request-scoped scheduler is given."""
        task = asyncio.get_running_loop().create_task(job())
        self._pending.add(task)
        task.add_done_callback(self._dispatch_done)

    def _dispatch_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("SOS dispatch failed", exc_info=task.exception())

    async def drain(self) -> None:
        """Wait for dispatches still running on the loop."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def _persist_trigger(self, db: Session, user: User, payload: AlertPayload, ip: str | None) -> None:
        user.active_sos = True
        user.last_latitude = payload.lat
        user.last_longitude = payload.lng
        user.last_accuracy = payload.accuracy
        user.last_location_at = payload.timestamp
        db.add(AuditEntry(user_id=user.id, action=AUDIT_SOS_TRIGGERED, ip=ip))
        db.commit()

    def _dispatch_job(
        self,
        session: SosSession,
        contacts: list[GuardianContact],
        payload: AlertPayload,
        subject_name: str,
    ) -> Callable[[], Awaitable[None]]:
        async def run() -> None:
            report = await self.dispatcher.dispatch(
                contacts, payload, subject_name, tracking_link=tracking_link_for(session.user_id)
            )
            session.last_report = report

        return run

    # ---- streaming ----

    def publish(self, user: User, sample: LocationSample) -> int:
        """Relay a sample from the subject. First sample starts streaming."""
        session = self.session_for(user)
        if not session.active:
            raise SessionNotActive("No active SOS episode; trigger SOS before sharing location")
        session.move_to(SosState.STREAMING)
        session.lat, session.lng, session.accuracy = sample.lat, sample.lng, sample.accuracy
        session.location_at = sample.timestamp
        return self.relay.publish(user.id, sample)

    def subscribe(self, subject_id: int) -> Subscription:
        return self.relay.subscribe(subject_id)

    # ---- resolve ----

    async def resolve(self, db: Session, user: User, ip: str | None = None) -> SosState:
        """Client says "I am safe". No-op unless an episode is active."""
        user_id = user.id
        session = self.session_for(user)
        if not session.active:
            return session.state
        await asyncio.to_thread(self._persist_resolve, db, user, ip)
        session.move_to(SosState.RESOLVED)
        self.relay.close_subject(user_id)
        return session.state

    def _persist_resolve(self, db: Session, user: User, ip: str | None) -> None:
        user.active_sos = False
        db.add(AuditEntry(user_id=user.id, action=AUDIT_SOS_RESOLVED, ip=ip))
        db.commit()
