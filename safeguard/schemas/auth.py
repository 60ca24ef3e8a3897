"""Auth schemas."""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=4)
    full_name: str = Field(min_length=1, max_length=255)
    phone: str = Field(pattern=r"^\+[1-9]\d{6,14}$")


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: "UserMe"


class UserMe(BaseModel):
    id: int
    email: str
    full_name: str
    phone: str
    is_active: bool
    active_sos: bool
    created_at: datetime

    model_config = {"from_attributes": True}


TokenResponse.model_rebuild()
