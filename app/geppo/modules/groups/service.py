from __future__ import annotations

import re
from datetime import date, datetime, time
from typing import TYPE_CHECKING

from app.geppo.audit import record_changes, record_event
from app.geppo.csv_import import CsvRowError, parse_import_csv
from app.geppo.models import User
from app.geppo.modules.groups.models import Group

if TYPE_CHECKING:
    from sqlalchemy.orm import Query, Session


PERMITTED_FIELDS = ("name", "email", "description", "deleted_at")
NAME_MAX_LENGTH = 64
_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def parse_deleted_at(raw: str | None) -> datetime | None:
    """Accepts YYYY-MM-DD (datepicker) or a full ISO timestamp."""
    raw = (raw or "").strip()
    if not raw:
        return None
    if len(raw) == 10:
        return datetime.combine(date.fromisoformat(raw), time.min)
    return datetime.fromisoformat(raw)


def validate_group_payload(payload: dict) -> list[str]:
    errors = []
    name = (payload.get("name") or "").strip()
    if not name:
        errors.append("Name is required.")
    elif len(name) > NAME_MAX_LENGTH:
        errors.append(f"Name is too long (maximum is {NAME_MAX_LENGTH} characters).")
    email = (payload.get("email") or "").strip()
    if email and not _EMAIL_RE.match(email):
        errors.append("Email is invalid.")
    try:
        parse_deleted_at(payload.get("deleted_at"))
    except ValueError:
        errors.append("Deleted at must be a date (YYYY-MM-DD).")
    return errors


def group_payload(group: Group) -> dict:
    return {
        "name": group.name,
        "email": group.email or "",
        "description": group.description or "",
        "deleted_at": group.deleted_at.isoformat() if group.deleted_at else "",
    }


def active_groups(s: "Session") -> "Query[Group]":
    return s.query(Group).filter(Group.deleted_at.is_(None)).order_by(Group.id.asc())


def create_group(s: "Session", payload: dict, user: User) -> Group:
    group = Group(
        name=(payload.get("name") or "").strip(),
        email=(payload.get("email") or "").strip() or None,
        description=(payload.get("description") or "").strip() or None,
        deleted_at=parse_deleted_at(payload.get("deleted_at")),
    )
    s.add(group)
    s.flush()
    record_event(
        s,
        actor=user,
        action="group.create",
        entity_type="Group",
        entity_id=str(group.id),
        metadata={"name": group.name},
    )
    return group


def update_group(s: "Session", group: Group, payload: dict, user: User) -> Group:
    before = group_payload(group)
    group.name = (payload.get("name") or "").strip()
    group.email = (payload.get("email") or "").strip() or None
    group.description = (payload.get("description") or "").strip() or None
    group.deleted_at = parse_deleted_at(payload.get("deleted_at"))
    s.flush()
    after = group_payload(group)
    record_changes(
        s,
        actor=user,
        action="group.update",
        entity_type="Group",
        entity_id=group.id,
        changes={k: [before[k], after[k]] for k in PERMITTED_FIELDS},
    )
    return group


def resolve_user_ids(s: "Session", raw_ids: list[str]) -> tuple[list[User], list[str]]:
    errors: list[str] = []
    ids: list[int] = []
    for raw in raw_ids:
        raw = (raw or "").strip()
        if not raw:
            continue
        try:
            uid = int(raw)
        except ValueError:
            errors.append(f"User id {raw!r} is not a number.")
            continue
        if uid not in ids:
            ids.append(uid)
    if errors:
        return [], errors

    users = s.query(User).filter(User.id.in_(ids)).order_by(User.id.asc()).all() if ids else []
    missing = sorted(set(ids) - {u.id for u in users})
    if missing:
        errors.append(f"Users not found: {', '.join(str(m) for m in missing)}.")
        return [], errors
    return users, []


def update_group_assign(
    s: "Session",
    group: Group,
    raw_user_ids: list[str],
    actor: User,
    *,
    path: str | None = None,
) -> list[str]:
    """
    Replace the group's members with exactly `raw_user_ids`.

    Returns validation messages; when there are any, the membership is left
    untouched and no audit entry is written. On success one audit entry holds
    the member names before and after, ordered by user id.
    """
    errors = validate_group_payload(group_payload(group))
    users, id_errors = resolve_user_ids(s, raw_user_ids)
    errors.extend(id_errors)
    if errors:
        return errors

    users_before = [u.name for u in group.users]
    group.users = users
    s.flush()
    users_after = [u.name for u in group.users]

    record_event(
        s,
        actor=actor,
        action="update_group_assign",
        entity_type="Group",
        entity_id=str(group.id),
        metadata={"changes": {"users": [users_before, users_after]}},
        path=path,
    )
    return []


def import_groups_csv(s: "Session", file_bytes: bytes, user: User) -> tuple[int, list[CsvRowError]]:
    """Bulk-create groups from CSV; every row is validated like the admin form."""
    created = 0
    errors: list[CsvRowError] = []
    for row_number, values in parse_import_csv(file_bytes, PERMITTED_FIELDS):
        row_errors = validate_group_payload(values)
        if row_errors:
            errors.extend(CsvRowError(row_number, msg) for msg in row_errors)
            continue
        s.add(
            Group(
                name=values.get("name", ""),
                email=values.get("email") or None,
                description=values.get("description") or None,
                deleted_at=parse_deleted_at(values.get("deleted_at")),
            )
        )
        created += 1

    if created:
        record_event(
            s,
            actor=user,
            action="group.import",
            entity_type="Group",
            metadata={"created": created, "errors": len(errors)},
        )
    return created, errors
