"""Guardian notification dispatch over voice calls and SMS."""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

from twilio.base.exceptions import TwilioException
from twilio.rest import Client
from twilio.twiml.voice_response import VoiceResponse

from safeguard.core.config import Settings
from safeguard.core.exceptions import TransportError, TransportUnavailable
from safeguard.core.sos_policies import DEFAULT_NOTE, MAP_LINK_TEMPLATE, VOICE_CALL_PRIORITY

logger = logging.getLogger(__name__)


class NotificationTransport(Protocol):
    """Sends one voice call or one text. Each call may raise ``TransportError``."""

    def call(self, to_number: str, spoken_message: str) -> str | None: ...

    def text(self, to_number: str, body: str) -> str | None: ...


class TwilioTransport:
    """Twilio-backed transport. Returns the provider sid of each call/message."""

    def __init__(self, client: Client, from_number: str, voice: str = "alice") -> None:
        self.client = client
        self.from_number = from_number
        self.voice = voice

    def call(self, to_number: str, spoken_message: str) -> str | None:
        twiml = VoiceResponse()
        twiml.say(spoken_message, voice=self.voice)
        try:
            call = self.client.calls.create(twiml=str(twiml), to=to_number, from_=self.from_number)
        except TwilioException as e:
            raise TransportError(str(e)) from e
        return call.sid

    def text(self, to_number: str, body: str) -> str | None:
        try:
            message = self.client.messages.create(body=body, to=to_number, from_=self.from_number)
        except TwilioException as e:
            raise TransportError(str(e)) from e
        return message.sid


def build_transport(config: Settings) -> TwilioTransport:
    """Create the Twilio transport, or raise ``TransportUnavailable`` if unconfigured."""
    if not (config.twilio_account_sid and config.twilio_auth_token and config.twilio_from_number):
        raise TransportUnavailable("Twilio credentials are not configured")
    client = Client(config.twilio_account_sid, config.twilio_auth_token)
    return TwilioTransport(client, config.twilio_from_number, voice=config.twilio_voice)


class Outcome(str, enum.Enum):
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class GuardianContact:
    """Snapshot of a guardian, detached from the DB session."""

    id: int
    name: str
    phone: str
    priority: int
    can_view_live_location: bool = True

    @classmethod
    def from_model(cls, guardian) -> "GuardianContact":
        return cls(
            id=guardian.id,
            name=guardian.name,
            phone=guardian.phone,
            priority=guardian.priority,
            can_view_live_location=guardian.can_view_live_location,
        )


@dataclass(frozen=True)
class AlertPayload:
    lat: float
    lng: float
    accuracy: float | None = None
    note: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def map_link(self) -> str:
        return MAP_LINK_TEMPLATE.format(lat=self.lat, lng=self.lng)

    @property
    def note_or_default(self) -> str:
        note = (self.note or "").strip()
        return note or DEFAULT_NOTE


@dataclass
class GuardianDispatch:
    """Outcome of one guardian's call and text."""

    guardian_id: int
    guardian_name: str
    phone: str
    priority: int
    call: Outcome = Outcome.SKIPPED
    text: Outcome = Outcome.SKIPPED
    call_error: str | None = None
    text_error: str | None = None
    call_sid: str | None = None
    text_sid: str | None = None
    text_body: str | None = None


@dataclass
class DispatchReport:
    subject_name: str
    outcomes: list[GuardianDispatch] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def calls_attempted(self) -> list[GuardianDispatch]:
        return [o for o in self.outcomes if o.call is not Outcome.SKIPPED]

    @property
    def texts_attempted(self) -> list[GuardianDispatch]:
        return [o for o in self.outcomes if o.text is not Outcome.SKIPPED]

    @property
    def failures(self) -> int:
        return sum((o.call is Outcome.FAILED) + (o.text is Outcome.FAILED) for o in self.outcomes)


def order_by_priority(guardians: Iterable[GuardianContact]) -> list[GuardianContact]:
    """Ascending priority; ``sorted`` is stable so ties keep their order."""
    return sorted(guardians, key=lambda g: g.priority)


def spoken_message(subject_name: str) -> str:
    return f"Emergency alert for {subject_name}. Link sent to phone."


def text_message(subject_name: str, payload: AlertPayload, tracking_link: str | None = None) -> str:
    body = f"SOS from {subject_name}: {payload.note_or_default}. Track: {payload.map_link}"
    if tracking_link:
        body += f" Live: {tracking_link}"
    return body


def _failed(guardian: GuardianContact, error: BaseException) -> GuardianDispatch:
    """Outcome for a guardian whose notification broke before reaching the transport."""
    logger.error("Notifying guardian=%s failed: %r", guardian.id, error)
    result = GuardianDispatch(
        guardian_id=guardian.id,
        guardian_name=guardian.name,
        phone=guardian.phone,
        priority=guardian.priority,
        text=Outcome.FAILED,
        text_error=str(error) or type(error).__name__,
    )
    if guardian.priority == VOICE_CALL_PRIORITY:
        result.call, result.call_error = Outcome.FAILED, result.text_error
    return result


class NotificationDispatcher:
    """Escalates an alert to guardians by priority.

    Primary guardians get a voice call; every guardian gets a text. Guardians
    are notified concurrently and a failure for one never affects the others.
    Without a transport every attempt is logged and reported as skipped.
    """

    def __init__(self, transport: NotificationTransport | None) -> None:
        self.transport = transport

    @property
    def available(self) -> bool:
        return self.transport is not None

    async def dispatch(
        self,
        guardians: Iterable[GuardianContact],
        payload: AlertPayload,
        subject_name: str,
        tracking_link: Callable[[GuardianContact], str | None] | None = None,
    ) -> DispatchReport:
        ordered = order_by_priority(guardians)
        report = DispatchReport(subject_name=subject_name)
        results = await asyncio.gather(
            *[self._notify(g, payload, subject_name, tracking_link) for g in ordered],
            return_exceptions=True,
        )
        report.outcomes = [
            _failed(g, r) if isinstance(r, BaseException) else r for g, r in zip(ordered, results)
        ]
        logger.info(
            "Dispatch for %s: guardians=%s calls=%s texts=%s failures=%s",
            subject_name,
            len(report.outcomes),
            len(report.calls_attempted),
            len(report.texts_attempted),
            report.failures,
        )
        return report

    async def _notify(
        self,
        guardian: GuardianContact,
        payload: AlertPayload,
        subject_name: str,
        tracking_link: Callable[[GuardianContact], str | None] | None,
    ) -> GuardianDispatch:
        result = GuardianDispatch(
            guardian_id=guardian.id,
            guardian_name=guardian.name,
            phone=guardian.phone,
            priority=guardian.priority,
        )
        link = None
        if tracking_link and guardian.can_view_live_location:
            try:
                link = tracking_link(guardian)
            except Exception as e:
                logger.error("Tracking link for guardian=%s failed, texting without it: %s", guardian.id, e)
        body = text_message(subject_name, payload, link)
        result.text_body = body

        if guardian.priority == VOICE_CALL_PRIORITY:
            result.call, result.call_sid, result.call_error = await self._send(
                "call", guardian, spoken_message(subject_name)
            )
        result.text, result.text_sid, result.text_error = await self._send("text", guardian, body)
        return result

    async def _send(
        self, kind: str, guardian: GuardianContact, content: str
    ) -> tuple[Outcome, str | None, str | None]:
        if self.transport is None:
            logger.warning(
                "Transport unavailable, %s to guardian=%s (%s) not sent: %s",
                kind,
                guardian.id,
                guardian.phone,
                content,
            )
            return Outcome.SKIPPED, None, "transport unavailable"

        send = self.transport.call if kind == "call" else self.transport.text
        try:
            sid = await asyncio.to_thread(send, guardian.phone, content)
        except Exception as e:
            logger.error("Failed to %s guardian=%s (%s): %s", kind, guardian.id, guardian.phone, e)
            return Outcome.FAILED, None, str(e)
        logger.info("Sent %s to guardian=%s sid=%s", kind, guardian.id, sid)
        return Outcome.SENT, sid, None
