"""
Draft/shipped lifecycle shared by monthly reports and articles.

Rows persist the state as a nullable `shipped_at` column; code reads it back
through `state_of()` as one of two closed variants so transitions are explicit.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, Union


class WorkflowError(RuntimeError):
    pass


@dataclass(frozen=True)
class Draft:
    label = "wip"


@dataclass(frozen=True)
class Shipped:
    at: datetime
    label = "shipped"


ReportState = Union[Draft, Shipped]


class Shippable(Protocol):
    shipped_at: datetime | None
    user_id: int


def state_of(record: Shippable) -> ReportState:
    if record.shipped_at is None:
        return Draft()
    return Shipped(at=record.shipped_at)


def ship(record: Shippable, now: datetime | None = None) -> bool:
    """
    Move `record` into the shipped state. Returns True only for an actual
    Draft -> Shipped transition; shipping twice keeps the first timestamp.
    """
    state = state_of(record)
    if isinstance(state, Shipped):
        return False
    if isinstance(state, Draft):
        record.shipped_at = now or datetime.utcnow()
        return True
    raise WorkflowError(f"Unknown state: {state!r}")


def is_browseable(record: Shippable, viewer_id: int | None) -> bool:
    return isinstance(state_of(record), Shipped) or (viewer_id is not None and record.user_id == viewer_id)
