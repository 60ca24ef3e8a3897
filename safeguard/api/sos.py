"""SOS trigger, resolve and status API."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from safeguard.core.deps import client_ip, get_current_user, get_sos_manager
from safeguard.core.exceptions import NoGuardians, RateLimited
from safeguard.db.session import get_db
from safeguard.models.user import User
from safeguard.schemas.sos import (
    DispatchOutcomeResponse,
    LastLocation,
    SosResolveResponse,
    SosStatusResponse,
    SosTriggerRequest,
    SosTriggerResponse,
)
from safeguard.services.notification_service import AlertPayload
from safeguard.services.sos_service import SosSessionManager

router = APIRouter(prefix="/sos", tags=["sos"])


@router.post("/trigger", response_model=SosTriggerResponse)
async def trigger(
    data: SosTriggerRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    manager: SosSessionManager = Depends(get_sos_manager),
):
    """Raise an SOS. Guardians are notified after the response is sent."""
    payload = AlertPayload(
        lat=data.location.lat,
        lng=data.location.lng,
        accuracy=data.accuracy,
        note=data.note,
        timestamp=data.timestamp or datetime.now(timezone.utc),
    )
    try:
        ack = await manager.trigger(
            db,
            current_user,
            payload,
            ip=client_ip(request),
            schedule=background_tasks.add_task,
        )
    except NoGuardians as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except RateLimited as e:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=str(e),
            headers={"Retry-After": str(e.retry_after)},
        )
    return SosTriggerResponse(success=True, contacts_notified=ack.contacts_notified)


@router.post("/resolve", response_model=SosResolveResponse)
async def resolve(
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    manager: SosSessionManager = Depends(get_sos_manager),
):
    """Mark the user safe: stop sharing location and close viewers."""
    state = await manager.resolve(db, current_user, ip=client_ip(request))
    return SosResolveResponse(success=True, state=state.value)


@router.get("/status", response_model=SosStatusResponse)
def sos_status(
    current_user: User = Depends(get_current_user),
    manager: SosSessionManager = Depends(get_sos_manager),
):
    """Current episode state, last location and last dispatch outcome."""
    session = manager.session_for(current_user)
    last_location = None
    if session.lat is not None and session.lng is not None:
        last_location = LastLocation(
            lat=session.lat,
            lng=session.lng,
            accuracy=session.accuracy,
            timestamp=session.location_at,
        )
    last_dispatch = []
    if session.last_report:
        last_dispatch = [
            DispatchOutcomeResponse(
                guardian_id=o.guardian_id,
                guardian_name=o.guardian_name,
                priority=o.priority,
                call=o.call.value,
                text=o.text.value,
                call_error=o.call_error,
                text_error=o.text_error,
            )
            for o in session.last_report.outcomes
        ]
    return SosStatusResponse(
        user_id=current_user.id,
        state=session.state.value,
        active=session.active,
        started_at=session.started_at,
        last_location=last_location,
        subscribers=manager.relay.subscriber_count(current_user.id),
        last_dispatch=last_dispatch,
    )
