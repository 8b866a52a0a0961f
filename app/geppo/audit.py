import json
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.geppo.models import AuditEvent, User


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
    path: str | None = None,
) -> AuditEvent:
    """
    Append-only audit event helper.
    """
    in_request = has_request_context()
    rid = request_id or (getattr(g, "request_id", None) if in_request else None)
    ev = AuditEvent(
        request_id=rid,
        path=path or (request.path if in_request else None),
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        metadata_json=json.dumps(metadata, sort_keys=True, ensure_ascii=False, default=str) if metadata else None,
    )
    s.add(ev)
    return ev


def record_changes(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str,
    entity_id: int | str,
    changes: dict[str, list[Any]],
    path: str | None = None,
) -> AuditEvent | None:
    """
    Before/after diff log for admin edits. Call only after the mutation has been
    validated; `changes` maps field -> [before, after]. Nothing is written when
    no field actually changed.
    """
    diff = {k: v for k, v in changes.items() if v[0] != v[1]}
    if not diff:
        return None
    return record_event(
        s,
        actor=actor,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        metadata={"changes": diff},
        path=path,
    )


def event_changes(ev: AuditEvent) -> dict[str, list[Any]]:
    if not ev.metadata_json:
        return {}
    return (json.loads(ev.metadata_json) or {}).get("changes") or {}
