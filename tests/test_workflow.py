from datetime import datetime
from types import SimpleNamespace

from app.geppo.workflow import Draft, Shipped, is_browseable, ship, state_of


def _record(shipped_at=None, user_id=1):
    return SimpleNamespace(shipped_at=shipped_at, user_id=user_id)


def test_state_of():
    assert state_of(_record()) == Draft()
    at = datetime(2024, 5, 1, 9, 0)
    assert state_of(_record(at)) == Shipped(at=at)


def test_ship_is_a_one_way_transition():
    rec = _record()
    first = datetime(2024, 5, 1, 9, 0)
    assert ship(rec, now=first) is True
    assert rec.shipped_at == first

    assert ship(rec, now=datetime(2024, 6, 1)) is False
    assert rec.shipped_at == first


def test_ship_defaults_to_now():
    rec = _record()
    assert ship(rec) is True
    assert isinstance(rec.shipped_at, datetime)


def test_drafts_are_browseable_by_owner_only():
    draft = _record(user_id=7)
    assert is_browseable(draft, 7) is True
    assert is_browseable(draft, 8) is False
    assert is_browseable(draft, None) is False


def test_shipped_is_browseable_by_anyone():
    shipped = _record(datetime(2024, 5, 1), user_id=7)
    assert is_browseable(shipped, 8) is True
    assert is_browseable(shipped, None) is True
