"""SOS trigger, status and live-location schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from safeguard.core.sos_policies import NOTE_MAX_LENGTH


class Coordinates(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class SosTriggerRequest(BaseModel):
    location: Coordinates
    accuracy: float | None = Field(default=None, ge=0)
    timestamp: datetime | None = None
    note: str | None = Field(default=None, max_length=NOTE_MAX_LENGTH)


class SosTriggerResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    contacts_notified: int = Field(serialization_alias="contactsNotified")


class SosResolveResponse(BaseModel):
    success: bool = True
    state: str


class DispatchOutcomeResponse(BaseModel):
    guardian_id: int
    guardian_name: str
    priority: int
    call: str
    text: str
    call_error: str | None = None
    text_error: str | None = None


class LastLocation(BaseModel):
    lat: float
    lng: float
    accuracy: float | None = None
    timestamp: datetime | None = None


class SosStatusResponse(BaseModel):
    user_id: int
    state: str
    active: bool
    started_at: datetime | None = None
    last_location: LastLocation | None = None
    subscribers: int = 0
    last_dispatch: list[DispatchOutcomeResponse] = []


class LocationSampleMessage(BaseModel):
    """Wire shape of update-location and location-broadcast."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: int = Field(alias="userId")
    full_name: str | None = Field(default=None, alias="fullName", max_length=255)
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    accuracy: float | None = Field(default=None, ge=0)
    msg: str | None = Field(default=None, max_length=NOTE_MAX_LENGTH)
    timestamp: datetime | None = None


class JoinRoomMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: int = Field(alias="userId")
