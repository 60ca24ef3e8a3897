"""Guardian directory service tests."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from safeguard.core.exceptions import CapacityExceeded
from safeguard.core.security import hash_password
from safeguard.db.session import SessionLocal
from safeguard.models.user import User
from safeguard.schemas.guardian import GuardianCreate, GuardianPermissions
from safeguard.services.guardian_service import GuardianDirectory


def _user(db, email="u@test.com", phone="+15550001111") -> User:
    user = User(email=email, hashed_password=hash_password("x"), full_name="U", phone=phone)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def test_concurrent_adds_never_exceed_capacity(db):
    """Ten parallel adds: exactly five land, the rest hit the cap."""
    user_id = _user(db).id
    directory = GuardianDirectory()

    def add(i: int) -> str:
        session = SessionLocal()
        try:
            directory.add(session, user_id, GuardianCreate(name=f"G{i}", phone=f"+1555600000{i}"))
            return "ok"
        except CapacityExceeded:
            return "full"
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=10) as pool:
        results = list(pool.map(add, range(10)))

    assert results.count("ok") == 5
    assert results.count("full") == 5
    assert directory.count(db, user_id) == 5


def test_list_is_stable_on_priority_ties(db):
    user_id = _user(db).id
    directory = GuardianDirectory()
    for name, prio in [("A", 2), ("B", 1), ("C", 2), ("D", 1)]:
        directory.add(db, user_id, GuardianCreate(name=name, phone="+15557770000", priority=prio))

    assert [g.name for g in directory.list(db, user_id)] == ["B", "D", "A", "C"]


def test_remove_unknown_is_noop(db):
    user_id = _user(db).id
    directory = GuardianDirectory()
    directory.remove(db, user_id, 12345)
    assert directory.list(db, user_id) == []


def test_live_location_permission(db):
    subject = _user(db)
    directory = GuardianDirectory()
    allowed = directory.add(db, subject.id, GuardianCreate(name="A", phone="+15558880001"))
    denied = directory.add(
        db,
        subject.id,
        GuardianCreate(
            name="B",
            phone="+15558880002",
            permissions=GuardianPermissions(can_view_live_location=False),
        ),
    )

    assert directory.can_view_live_location(db, subject.id, allowed.id)
    assert not directory.can_view_live_location(db, subject.id, denied.id)
    # guardian ids are scoped to their owner
    other = _user(db, email="other@test.com")
    assert not directory.can_view_live_location(db, other.id, allowed.id)


@pytest.mark.parametrize("capacity", [1, 3])
def test_capacity_is_configurable(db, capacity):
    user_id = _user(db).id
    directory = GuardianDirectory(capacity=capacity)
    for i in range(capacity):
        directory.add(db, user_id, GuardianCreate(name=f"G{i}", phone="+15559990000"))
    with pytest.raises(CapacityExceeded):
        directory.add(db, user_id, GuardianCreate(name="extra", phone="+15559990000"))
