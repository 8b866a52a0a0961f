import re
from datetime import date, datetime, time, timedelta

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for
from werkzeug.security import generate_password_hash

from app.geppo.audit import event_changes, record_changes, record_event
from app.geppo.db import db_session
from app.geppo.models import AuditEvent, Role, User
from app.geppo.rbac import require_permission, user_has_permission

bp = Blueprint("admin", __name__)

USER_NAME_MAX_LENGTH = 64
PASSWORD_MIN_LENGTH = 8
_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def _parse_date(s: str) -> date | None:
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/")
@require_permission("admin.view")
def index():
    from app.geppo.modules.groups.models import Group
    from app.geppo.modules.monthly_reports.models import MonthlyReport
    from app.geppo.modules.tags.models import Tag, TagStatus

    s = db_session()
    counts = {
        "users": s.query(User).count(),
        "groups": s.query(Group).filter(Group.deleted_at.is_(None)).count(),
        "tags": s.query(Tag).count(),
        "unfixed_tags": s.query(Tag).filter(Tag.status == TagStatus.unfixed).count(),
        "shipped_reports": s.query(MonthlyReport).filter(MonthlyReport.shipped_at.isnot(None)).count(),
    }
    recent = []
    if user_has_permission(g.current_user, "audit.view"):
        recent = s.query(AuditEvent).order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(10).all()
    return render_template("admin/index.html", counts=counts, recent_events=recent)


@bp.get("/audit")
@require_permission("audit.view")
def audit_list():
    """
    Audit trail (last 200 events) with simple filters:
    - action (contains)
    - actor_email (contains)
    - date range (YYYY-MM-DD)
    """
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    date_from = _parse_date(request.args.get("date_from") or "")
    date_to = _parse_date(request.args.get("date_to") or "")

    if (request.args.get("date_from") or "").strip() and not date_from:
        flash("date_from must be YYYY-MM-DD", "danger")
    if (request.args.get("date_to") or "").strip() and not date_to:
        flash("date_to must be YYYY-MM-DD", "danger")

    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if actor_email:
        q = q.filter(AuditEvent.actor_user_email.like(f"%{actor_email.lower()}%"))
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        # inclusive end-date (treat as whole day)
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    events = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(200).all()
    return render_template(
        "admin/audit/list.html",
        events=events,
        changes_of=event_changes,
        action=action,
        actor_email=actor_email,
        date_from=(request.args.get("date_from") or "").strip(),
        date_to=(request.args.get("date_to") or "").strip(),
    )


@bp.get("/login")
def login_redirect():
    return redirect(url_for("auth.login_get"))


# ============================================================================
# ACCOUNT MANAGEMENT
# ============================================================================

def _roles(s) -> list[Role]:
    return s.query(Role).order_by(Role.id.asc()).all()


def _account_errors(s, payload: dict, *, exclude_id: int | None = None) -> list[str]:
    errors = []
    name = payload["name"]
    if not name:
        errors.append("Name is required.")
    elif len(name) > USER_NAME_MAX_LENGTH:
        errors.append(f"Name is too long (maximum is {USER_NAME_MAX_LENGTH} characters).")

    email = payload["email"]
    if not email:
        errors.append("Email is required.")
    elif not _EMAIL_RE.match(email):
        errors.append("Invalid email format.")
    else:
        q = s.query(User).filter(User.email == email)
        if exclude_id is not None:
            q = q.filter(User.id != exclude_id)
        if q.first():
            errors.append("An account with this email already exists.")

    if payload["role"] and s.query(Role).filter(Role.key == payload["role"]).one_or_none() is None:
        errors.append("Unknown role.")
    return errors


def _password_errors(password: str, confirm: str) -> list[str]:
    if not password:
        return ["Password is required."]
    if len(password) < PASSWORD_MIN_LENGTH:
        return [f"Password must be at least {PASSWORD_MIN_LENGTH} characters."]
    if password != confirm:
        return ["Passwords do not match."]
    return []


def _account_payload() -> dict:
    return {
        "name": (request.form.get("name") or "").strip(),
        "email": (request.form.get("email") or "").strip().lower(),
        "role": (request.form.get("role") or "").strip(),
        "is_active": request.form.get("is_active") == "1",
    }


@bp.get("/accounts")
@require_permission("users.manage")
def accounts_list():
    s = db_session()
    users = s.query(User).order_by(User.id.asc()).all()
    return render_template("admin/accounts/list.html", users=users)


@bp.get("/accounts/new")
@require_permission("users.manage")
def accounts_new_get():
    return render_template("admin/accounts/new.html", roles=_roles(db_session()))


@bp.post("/accounts/new")
@require_permission("users.manage")
def accounts_new_post():
    s = db_session()
    payload = _account_payload()
    password = request.form.get("password") or ""

    errors = _account_errors(s, payload)
    errors.extend(_password_errors(password, request.form.get("password_confirm") or ""))
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("admin.accounts_new_get"))

    role = s.query(Role).filter(Role.key == (payload["role"] or "member")).one_or_none()
    new_user = User(
        name=payload["name"],
        email=payload["email"],
        password_hash=generate_password_hash(password),
        is_active=True,
        role=role,
    )
    s.add(new_user)
    s.flush()

    record_event(
        s,
        actor=_current_user(),
        action="user.create",
        entity_type="User",
        entity_id=str(new_user.id),
        metadata={"name": new_user.name, "email": new_user.email, "role": new_user.role_key},
    )
    s.commit()
    flash(f"Account created for {new_user.email}.", "success")
    return redirect(url_for("admin.accounts_detail", user_id=new_user.id))


@bp.get("/accounts/<int:user_id>")
@require_permission("users.manage")
def accounts_detail(user_id: int):
    s = db_session()
    user = s.get(User, user_id)
    if not user:
        abort(404)
    return render_template("admin/accounts/detail.html", account=user, roles=_roles(s))


@bp.post("/accounts/<int:user_id>/update")
@require_permission("users.manage")
def accounts_update(user_id: int):
    s = db_session()
    u = _current_user()
    user = s.get(User, user_id)
    if not user:
        abort(404)

    payload = _account_payload()
    errors = _account_errors(s, payload, exclude_id=user.id)
    if user.id == u.id and (not payload["is_active"] or payload["role"] != user.role_key):
        errors.append("You cannot deactivate yourself or change your own role.")
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("admin.accounts_detail", user_id=user_id))

    before = {"name": user.name, "email": user.email, "role": user.role_key, "is_active": user.is_active}
    user.name = payload["name"]
    user.email = payload["email"]
    user.role = s.query(Role).filter(Role.key == payload["role"]).one_or_none() if payload["role"] else None
    user.is_active = payload["is_active"]

    record_changes(
        s,
        actor=u,
        action="user.update",
        entity_type="User",
        entity_id=user.id,
        changes={k: [before[k], v] for k, v in (
            ("name", user.name),
            ("email", user.email),
            ("role", user.role_key),
            ("is_active", user.is_active),
        )},
    )
    s.commit()
    flash(f"Account updated for {user.email}.", "success")
    return redirect(url_for("admin.accounts_detail", user_id=user_id))


@bp.post("/accounts/<int:user_id>/reset-password")
@require_permission("users.manage")
def accounts_reset_password(user_id: int):
    s = db_session()
    u = _current_user()
    user = s.get(User, user_id)
    if not user:
        abort(404)

    errors = _password_errors(request.form.get("password") or "", request.form.get("password_confirm") or "")
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("admin.accounts_detail", user_id=user_id))

    user.password_hash = generate_password_hash(request.form.get("password") or "")
    record_event(
        s,
        actor=u,
        action="user.password_reset",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"target_email": user.email, "reset_by": u.email},
    )
    s.commit()
    flash(f"Password reset for {user.email}.", "success")
    return redirect(url_for("admin.accounts_detail", user_id=user_id))
