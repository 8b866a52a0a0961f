from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.geppo.db import db_session
from app.geppo.models import User
from app.geppo.modules.groups.models import Group
from app.geppo.modules.groups.service import (
    PERMITTED_FIELDS,
    create_group,
    group_payload,
    import_groups_csv,
    update_group,
    update_group_assign,
    validate_group_payload,
)
from app.geppo.rbac import require_permission

bp = Blueprint("groups_admin", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _payload() -> dict:
    return {k: request.form.get(k) for k in PERMITTED_FIELDS}


def _get_group_or_404(group_id: int) -> Group:
    group = db_session().get(Group, group_id)
    if not group:
        abort(404)
    return group


def _redirect_back(fallback: str):
    referrer = request.referrer
    if referrer and referrer.startswith(request.host_url):
        return redirect(referrer)
    return redirect(fallback)


@bp.get("/groups")
@require_permission("groups.manage")
def groups_list():
    s = db_session()
    groups = s.query(Group).order_by(Group.id.asc()).all()
    return render_template("admin/groups/list.html", groups=groups)


@bp.get("/groups/new")
@require_permission("groups.manage")
def groups_new_get():
    return render_template("admin/groups/new.html")


@bp.post("/groups/new")
@require_permission("groups.manage")
def groups_new_post():
    s = db_session()
    payload = _payload()
    errors = validate_group_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("groups_admin.groups_new_get"))

    group = create_group(s, payload, _current_user())
    s.commit()
    flash("Group created.", "success")
    return redirect(url_for("groups_admin.group_detail", group_id=group.id))


@bp.get("/groups/<int:group_id>")
@require_permission("groups.manage")
def group_detail(group_id: int):
    return render_template("admin/groups/detail.html", group=_get_group_or_404(group_id))


@bp.get("/groups/<int:group_id>/edit")
@require_permission("groups.manage")
def group_edit_get(group_id: int):
    group = _get_group_or_404(group_id)
    return render_template("admin/groups/edit.html", group=group, values=group_payload(group))


@bp.post("/groups/<int:group_id>/edit")
@require_permission("groups.manage")
def group_edit_post(group_id: int):
    s = db_session()
    group = _get_group_or_404(group_id)
    payload = _payload()
    errors = validate_group_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("groups_admin.group_edit_get", group_id=group.id))

    update_group(s, group, payload, _current_user())
    s.commit()
    flash("Group updated.", "success")
    return redirect(url_for("groups_admin.group_detail", group_id=group.id))


@bp.get("/groups/<int:group_id>/edit_group_assign")
@require_permission("groups.manage")
def edit_group_assign(group_id: int):
    s = db_session()
    group = _get_group_or_404(group_id)
    users = s.query(User).filter(User.is_active.is_(True)).order_by(User.id.asc()).all()
    member_ids = {u.id for u in group.users}
    return render_template("admin/groups/assign.html", group=group, users=users, member_ids=member_ids)


@bp.post("/groups/<int:group_id>/update_group_assign")
@require_permission("groups.manage")
def update_group_assign_post(group_id: int):
    s = db_session()
    group = _get_group_or_404(group_id)

    errors = update_group_assign(
        s,
        group,
        request.form.getlist("user_ids"),
        _current_user(),
        path=url_for("groups_admin.group_detail", group_id=group.id),
    )
    if errors:
        s.rollback()
        for e in errors:
            flash(e, "danger")
        return _redirect_back(url_for("admin.index"))

    s.commit()
    flash("Group members updated.", "success")
    return redirect(url_for("groups_admin.group_detail", group_id=group.id))


@bp.get("/groups/import")
@require_permission("groups.manage")
def groups_import_get():
    return render_template(
        "admin/csv_import.html",
        title="Import groups",
        columns=PERMITTED_FIELDS,
        action=url_for("groups_admin.groups_import_post"),
        back=url_for("groups_admin.groups_list"),
    )


@bp.post("/groups/import")
@require_permission("groups.manage")
def groups_import_post():
    s = db_session()
    f = request.files.get("file")
    if not f or not f.filename:
        flash("Choose a CSV file to import.", "danger")
        return redirect(url_for("groups_admin.groups_import_get"))
    try:
        created, errors = import_groups_csv(s, f.read(), _current_user())
    except ValueError as e:
        flash(str(e), "danger")
        return redirect(url_for("groups_admin.groups_import_get"))
    s.commit()
    for e in errors[:20]:
        flash(str(e), "warning")
    flash(f"Imported {created} group(s).", "success")
    return redirect(url_for("groups_admin.groups_list"))
