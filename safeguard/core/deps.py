"""FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from safeguard.core.security import TRACKING_SCOPE, decode_access_token
from safeguard.db.session import get_db
from safeguard.models.user import User
from safeguard.services.auth_service import get_user_by_email
from safeguard.services.guardian_service import GuardianDirectory
from safeguard.services.sos_service import SosSessionManager

security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    db: Annotated[Session, Depends(get_db)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> User:
    """Require authenticated user. Raises 401 if not authenticated."""
    if not credentials:
        raise _unauthorized("Not authenticated")
    payload = decode_access_token(credentials.credentials)
    # tracking tokens only grant live-location viewing
    if not payload or "sub" not in payload or payload.get("scope") == TRACKING_SCOPE:
        raise _unauthorized("Invalid or expired token")
    # sub is email for access tokens
    user = get_user_by_email(db, payload["sub"])
    if not user:
        raise _unauthorized("User not found")
    if not user.is_active:
        raise _unauthorized("User is inactive")
    return user


def get_directory(request: Request) -> GuardianDirectory:
    return request.app.state.directory


def get_sos_manager(request: Request) -> SosSessionManager:
    return request.app.state.sos


def client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None
