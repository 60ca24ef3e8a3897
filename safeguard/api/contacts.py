"""Guardian directory API."""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from safeguard.core.deps import get_current_user, get_directory
from safeguard.core.exceptions import CapacityExceeded
from safeguard.db.session import get_db
from safeguard.models.user import User
from safeguard.schemas.guardian import GuardianCreate, GuardianResponse
from safeguard.services.guardian_service import GuardianDirectory

router = APIRouter(prefix="/user/contacts", tags=["contacts"])


@router.get("", response_model=list[GuardianResponse])
def list_contacts(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    directory: GuardianDirectory = Depends(get_directory),
):
    """Current user's guardians, primary first."""
    return [GuardianResponse.from_model(g) for g in directory.list(db, current_user.id)]


@router.post("", response_model=GuardianResponse, status_code=status.HTTP_201_CREATED)
def add_contact(
    data: GuardianCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    directory: GuardianDirectory = Depends(get_directory),
):
    """Add a guardian. Fails once the circle holds the maximum."""
    try:
        guardian = directory.add(db, current_user.id, data)
    except CapacityExceeded as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return GuardianResponse.from_model(guardian)


@router.delete("/{guardian_id}")
def remove_contact(
    guardian_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    directory: GuardianDirectory = Depends(get_directory),
):
    """Remove a guardian. Always succeeds, even for unknown or malformed ids."""
    try:
        gid = int(guardian_id)
    except ValueError:
        # no guardian can have this id
        return {"message": "Deleted"}
    directory.remove(db, current_user.id, gid)
    return {"message": "Deleted"}
