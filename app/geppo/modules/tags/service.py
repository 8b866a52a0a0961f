from __future__ import annotations

import re
from typing import TYPE_CHECKING

from app.geppo.audit import record_changes, record_event
from app.geppo.csv_import import CsvRowError, parse_import_csv
from app.geppo.modules.tags.models import Tag, TagStatus

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.geppo.models import User


PERMITTED_FIELDS = ("name", "status")
NAME_MAX_LENGTH = 32

_BLANK = " \t 　"
_HIRAGANA = "ぁ-ゖゝ-ゟ"
_KATAKANA = "ァ-ヺヽ-ヿㇰ-ㇿｦ-ｯｱ-ﾝ"
# Latin letters/digits, a few symbols, blanks, kana, prolonged-sound marks, kanji.
VALID_NAME_RE = re.compile(rf"[a-zA-Z0-9_.+#'\-{_BLANK}{_HIRAGANA}{_KATAKANA}ー－一-龠々]+")

_SEPARATORS_RE = re.compile(r"[,、]")


def validate_tag_name(name: str) -> list[str]:
    errors = []
    if not name:
        errors.append("Tag name is required.")
        return errors
    if len(name) > NAME_MAX_LENGTH:
        errors.append(f"Tag name {name!r} is too long (maximum is {NAME_MAX_LENGTH} characters).")
    if not VALID_NAME_RE.fullmatch(name):
        errors.append(f"Tag name {name!r} contains characters that are not allowed.")
    return errors


def parse_status(raw: str | None) -> TagStatus | None:
    raw = (raw or "").strip()
    if not raw:
        return TagStatus.unfixed
    try:
        return TagStatus(raw)
    except ValueError:
        return None


def validate_tag_payload(payload: dict) -> list[str]:
    errors = validate_tag_name((payload.get("name") or "").strip())
    if parse_status(payload.get("status")) is None:
        errors.append(f"Invalid status. Must be one of: {', '.join(s.value for s in TagStatus)}")
    return errors


def parse_tag_names(raw: str | None) -> list[str]:
    """Split a comma-separated tag field; blanks dropped, duplicates removed, order kept."""
    names: list[str] = []
    for part in _SEPARATORS_RE.split(raw or ""):
        name = part.strip()
        if name and name not in names:
            names.append(name)
    return names


def _existing_tags(s: "Session", names: list[str]) -> dict[str, Tag]:
    if not names:
        return {}
    return {t.name: t for t in s.query(Tag).filter(Tag.name.in_(names)).all()}


def tag_name_errors(s: "Session", names: list[str]) -> list[str]:
    """Validation messages for names that would create new tags."""
    existing = _existing_tags(s, names)
    errors: list[str] = []
    for name in names:
        if name not in existing:
            errors.extend(validate_tag_name(name))
    return errors


def find_or_create_tags(s: "Session", names: list[str]) -> tuple[list[Tag], list[str]]:
    """
    Resolve tag names to Tag rows, creating unknown ones as "unfixed".
    Returns (tags, errors); on errors nothing new is added to the session.
    """
    errors = tag_name_errors(s, names)
    if errors:
        return [], errors
    existing = _existing_tags(s, names)

    tags: list[Tag] = []
    for name in names:
        tag = existing.get(name)
        if tag is None:
            tag = Tag(name=name, status=TagStatus.unfixed)
            s.add(tag)
        tags.append(tag)
    return tags, []


def create_tag(s: "Session", payload: dict, user: "User") -> Tag:
    tag = Tag(
        name=(payload.get("name") or "").strip(),
        status=parse_status(payload.get("status")) or TagStatus.unfixed,
    )
    s.add(tag)
    s.flush()
    record_event(
        s,
        actor=user,
        action="tag.create",
        entity_type="Tag",
        entity_id=str(tag.id),
        metadata={"name": tag.name, "status": tag.status.value},
    )
    return tag


def update_tag(s: "Session", tag: Tag, payload: dict, user: "User") -> Tag:
    before = {"name": tag.name, "status": tag.status.value}
    tag.name = (payload.get("name") or "").strip()
    tag.status = parse_status(payload.get("status")) or tag.status
    s.flush()
    record_changes(
        s,
        actor=user,
        action="tag.update",
        entity_type="Tag",
        entity_id=tag.id,
        changes={
            "name": [before["name"], tag.name],
            "status": [before["status"], tag.status.value],
        },
    )
    return tag


def name_taken(s: "Session", name: str, exclude_id: int | None = None) -> bool:
    q = s.query(Tag).filter(Tag.name == name)
    if exclude_id is not None:
        q = q.filter(Tag.id != exclude_id)
    return s.query(q.exists()).scalar()


def import_tags_csv(s: "Session", file_bytes: bytes, user: "User") -> tuple[int, list[CsvRowError]]:
    """
    Bulk-create tags from CSV (`name`, optional `status`).

    Names are not checked against the tag charset here; back-office imports
    are trusted. Empty, over-long, duplicate names and bad statuses are still
    reported per row.
    """
    created = 0
    errors: list[CsvRowError] = []
    seen: set[str] = set()
    for row_number, values in parse_import_csv(file_bytes, PERMITTED_FIELDS):
        name = values.get("name", "")
        if not name:
            errors.append(CsvRowError(row_number, "Tag name is required."))
            continue
        if len(name) > NAME_MAX_LENGTH:
            errors.append(CsvRowError(row_number, f"Tag name {name!r} is longer than {NAME_MAX_LENGTH} characters."))
            continue
        status = parse_status(values.get("status"))
        if status is None:
            errors.append(CsvRowError(row_number, f"Invalid status {values.get('status')!r}."))
            continue
        if name in seen or name_taken(s, name):
            errors.append(CsvRowError(row_number, f"Tag {name!r} already exists."))
            continue
        seen.add(name)
        s.add(Tag(name=name, status=status))
        created += 1

    if created:
        record_event(
            s,
            actor=user,
            action="tag.import",
            entity_type="Tag",
            metadata={"created": created, "errors": len(errors)},
        )
    return created, errors
