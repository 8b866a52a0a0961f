from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.geppo.db import db_session
from app.geppo.models import User
from app.geppo.modules.tags.models import Tag, TagStatus
from app.geppo.modules.tags.service import (
    PERMITTED_FIELDS,
    create_tag,
    import_tags_csv,
    name_taken,
    update_tag,
    validate_tag_payload,
)
from app.geppo.rbac import require_permission

bp = Blueprint("tags_admin", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _payload() -> dict:
    return {k: request.form.get(k) for k in PERMITTED_FIELDS}


def _get_tag_or_404(tag_id: int) -> Tag:
    tag = db_session().get(Tag, tag_id)
    if not tag:
        abort(404)
    return tag


@bp.get("/tags")
@require_permission("tags.manage")
def tags_list():
    s = db_session()
    search = (request.args.get("q") or "").strip()
    status_filter = (request.args.get("status") or "").strip()

    q = s.query(Tag)
    if search:
        q = q.filter(Tag.name.ilike(f"%{search}%"))
    if status_filter in {st.value for st in TagStatus}:
        q = q.filter(Tag.status == TagStatus(status_filter))
    tags = q.order_by(Tag.id.asc()).all()
    return render_template(
        "admin/tags/list.html",
        tags=tags,
        search=search,
        status_filter=status_filter,
        statuses=list(TagStatus),
    )


@bp.get("/tags/new")
@require_permission("tags.manage")
def tags_new_get():
    return render_template("admin/tags/new.html", statuses=list(TagStatus))


@bp.post("/tags/new")
@require_permission("tags.manage")
def tags_new_post():
    s = db_session()
    payload = _payload()
    errors = validate_tag_payload(payload)
    if not errors and name_taken(s, (payload.get("name") or "").strip()):
        errors.append("Tag name has already been taken.")
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("tags_admin.tags_new_get"))

    tag = create_tag(s, payload, _current_user())
    s.commit()
    flash("Tag created.", "success")
    return redirect(url_for("tags_admin.tag_detail", tag_id=tag.id))


@bp.get("/tags/<int:tag_id>")
@require_permission("tags.manage")
def tag_detail(tag_id: int):
    return render_template("admin/tags/detail.html", tag=_get_tag_or_404(tag_id))


@bp.get("/tags/<int:tag_id>/edit")
@require_permission("tags.manage")
def tag_edit_get(tag_id: int):
    return render_template("admin/tags/edit.html", tag=_get_tag_or_404(tag_id), statuses=list(TagStatus))


@bp.post("/tags/<int:tag_id>/edit")
@require_permission("tags.manage")
def tag_edit_post(tag_id: int):
    s = db_session()
    tag = _get_tag_or_404(tag_id)
    payload = _payload()
    errors = validate_tag_payload(payload)
    if not errors and name_taken(s, (payload.get("name") or "").strip(), exclude_id=tag.id):
        errors.append("Tag name has already been taken.")
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("tags_admin.tag_edit_get", tag_id=tag.id))

    update_tag(s, tag, payload, _current_user())
    s.commit()
    flash("Tag updated.", "success")
    return redirect(url_for("tags_admin.tag_detail", tag_id=tag.id))


@bp.get("/tags/import")
@require_permission("tags.manage")
def tags_import_get():
    return render_template(
        "admin/csv_import.html",
        title="Import tags",
        columns=PERMITTED_FIELDS,
        action=url_for("tags_admin.tags_import_post"),
        back=url_for("tags_admin.tags_list"),
    )


@bp.post("/tags/import")
@require_permission("tags.manage")
def tags_import_post():
    s = db_session()
    f = request.files.get("file")
    if not f or not f.filename:
        flash("Choose a CSV file to import.", "danger")
        return redirect(url_for("tags_admin.tags_import_get"))
    try:
        created, errors = import_tags_csv(s, f.read(), _current_user())
    except ValueError as e:
        flash(str(e), "danger")
        return redirect(url_for("tags_admin.tags_import_get"))
    s.commit()
    for e in errors[:20]:
        flash(str(e), "warning")
    flash(f"Imported {created} tag(s).", "success")
    return redirect(url_for("tags_admin.tags_list"))
