"""Guardian directory: each user's circle of trusted contacts."""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from safeguard.core.exceptions import CapacityExceeded
from safeguard.core.locks import KeyedLocks
from safeguard.core.sos_policies import MAX_GUARDIANS
from safeguard.models.guardian import Guardian
from safeguard.models.user import User
from safeguard.schemas.guardian import GuardianCreate

logger = logging.getLogger(__name__)


class GuardianDirectory:
    """List, add and remove guardians for a user.

    ``add`` holds a per-user lock (and a row lock on the owner where the
    database supports it) across the count and the insert, so concurrent adds
    can never push a user past ``MAX_GUARDIANS``.
    """

    def __init__(self, capacity: int = MAX_GUARDIANS) -> None:
        self.capacity = capacity
        self._locks = KeyedLocks()

    def list(self, db: Session, user_id: int) -> list[Guardian]:
        """Guardians ordered by priority, ties in insertion order."""
        result = db.execute(
            select(Guardian)
            .where(Guardian.user_id == user_id)
            .order_by(Guardian.priority.asc(), Guardian.id.asc())
        )
        return list(result.scalars().all())

    def count(self, db: Session, user_id: int) -> int:
        return db.execute(
            select(func.count()).select_from(Guardian).where(Guardian.user_id == user_id)
        ).scalar_one()

    def add(self, db: Session, user_id: int, data: GuardianCreate) -> Guardian:
        with self._locks.for_key(user_id):
            db.execute(select(User.id).where(User.id == user_id).with_for_update()).scalar_one()
            if self.count(db, user_id) >= self.capacity:
                db.rollback()
                raise CapacityExceeded(f"Guardian circle is full (max {self.capacity})")

            guardian = Guardian(
                user_id=user_id,
                name=data.name.strip(),
                phone=data.phone,
                relationship_tag=data.relationship,
                priority=data.priority,
                can_view_live_location=data.permissions.can_view_live_location,
            )
            db.add(guardian)
            db.commit()
        db.refresh(guardian)
        logger.info("Guardian added: user=%s guardian=%s priority=%s", user_id, guardian.id, guardian.priority)
        return guardian

    def remove(self, db: Session, user_id: int, guardian_id: int) -> None:
        """Delete a guardian. Unknown ids and other users' guardians are a no-op."""
        guardian = db.execute(
            select(Guardian).where(Guardian.id == guardian_id, Guardian.user_id == user_id)
        ).scalar_one_or_none()
        if guardian is None:
            return
        db.delete(guardian)
        db.commit()
        logger.info("Guardian removed: user=%s guardian=%s", user_id, guardian_id)

    def can_view_live_location(
        self,
        db: Session,
        subject_id: int,
        guardian_id: int,
    ) -> bool:
        """Whether the subject's guardian ``guardian_id`` may watch the live location.

        Only the guardian id signed into a tracking token counts. Phone numbers
        given at registration are unverified and never grant access.
        """
        stmt = select(Guardian.id).where(
            Guardian.id == guardian_id,
            Guardian.user_id == subject_id,
            Guardian.can_view_live_location.is_(True),
        )
        return db.execute(stmt.limit(1)).first() is not None
