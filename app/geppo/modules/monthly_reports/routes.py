from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, g, redirect, render_template, request, url_for
from sqlalchemy.exc import IntegrityError

from app.geppo.db import db_session
from app.geppo.models import User
from app.geppo.modules.monthly_reports.models import WORKING_PROCESS_LABELS, MonthlyReport, MonthlyReportComment
from app.geppo.modules.monthly_reports.notifications import notify_shipped
from app.geppo.modules.monthly_reports.service import (
    CONFLICT_MESSAGE,
    DUPLICATE_MONTH_MESSAGE,
    add_comment,
    copy_from_previous,
    create_report,
    default_target_month,
    editable,
    find_report,
    like,
    parse_target_month,
    previous_report,
    report_form_values,
    shipped_reports,
    unlike,
    update_report,
    user_reports_for_year,
    validate_comment_body,
    visibility,
)
from app.geppo.rbac import require_login
from app.geppo.utils import form_flag, paginate

bp = Blueprint("monthly_reports", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _get_report_or_404(report_id: int) -> MonthlyReport:
    report = db_session().get(MonthlyReport, report_id)
    if not report:
        abort(404)
    return report


def _get_browseable_report(report_id: int) -> MonthlyReport:
    report = _get_report_or_404(report_id)
    if not visibility(report, g.current_user):
        abort(403)
    return report


def _get_editable_report(report_id: int) -> MonthlyReport:
    # Outside the edit window a report is reported as missing, not forbidden.
    # An explicit target_month equal to the report's own month opens the window
    # for that report; edit.html posts it back, so a form that was opened keeps
    # saving after the default month moves on.
    report = db_session().get(MonthlyReport, report_id)
    requested = parse_target_month(request.values.get("target_month"))
    if not report or not editable(report, g.current_user, requested):
        abort(404)
    return report


def _params() -> dict:
    params = {k: request.form.get(k) for k in (
        "target_month",
        "business_content",
        "looking_back",
        "project_summary",
        "next_month_goals",
        "tags",
    )}
    params["working_process"] = request.form.getlist("working_process")
    return params


def _render_new(values: dict, target_month, *, errors: list[str] | None = None, copied: bool = False):
    s = db_session()
    copy_available = (
        not copied
        and target_month is not None
        and previous_report(s, _current_user(), target_month) is not None
    )
    return render_template(
        "monthly_reports/new.html",
        values=values,
        target_month=target_month,
        copy_available=copy_available,
        errors=errors or [],
        process_labels=WORKING_PROCESS_LABELS,
    )


def _render_edit(report: MonthlyReport, values: dict, *, errors: list[str] | None = None):
    return render_template(
        "monthly_reports/edit.html",
        report=report,
        values=values,
        errors=errors or [],
        process_labels=WORKING_PROCESS_LABELS,
    )


@bp.get("")
@require_login
def index():
    page = paginate(shipped_reports(db_session()), request.args.get("page"), current_app.config["PER_PAGE"])
    return render_template("monthly_reports/index.html", page=page)


@bp.get("/users/<int:user_id>")
@require_login
def user(user_id: int):
    s = db_session()
    owner = s.get(User, user_id)
    if not owner:
        abort(404)
    raw_year = (request.args.get("target_year") or "").strip()
    if raw_year and not (raw_year.isdigit() and len(raw_year) == 4):
        abort(404)
    year = int(raw_year) if raw_year else default_target_month().year
    reports = user_reports_for_year(s, owner, g.current_user, year)
    return render_template("monthly_reports/user.html", owner=owner, year=year, reports=reports)


@bp.get("/new")
@require_login
def new():
    target_month = parse_target_month(request.args.get("target_month")) or default_target_month()
    return _render_new(report_form_values(), target_month)


@bp.post("")
@require_login
def create():
    s = db_session()
    u = _current_user()
    wip = form_flag(request.form.get("wip"))

    result = create_report(s, u, _params(), wip)
    if not result.ok:
        s.rollback()
        return _render_new(result.values, result.values.get("target_month"), errors=result.errors)

    try:
        s.commit()
    except IntegrityError:
        s.rollback()
        target_month = result.values.get("target_month")
        # A concurrent submission may have taken the month or a new tag name.
        duplicate = find_report(s, u, target_month) is not None
        current_app.logger.warning(
            "Monthly report create conflict (user_id=%s duplicate_month=%s request_id=%s)",
            u.id,
            duplicate,
            g.request_id,
        )
        return _render_new(
            result.values,
            target_month,
            errors=[DUPLICATE_MONTH_MESSAGE if duplicate else CONFLICT_MESSAGE],
        )

    report = result.report
    if result.newly_shipped:
        notify_shipped(report)
        flash("Monthly report shipped.", "success")
    else:
        flash("Monthly report saved as draft.", "success")
    return redirect(url_for("monthly_reports.show", report_id=report.id))


@bp.get("/copy")
@require_login
def copy():
    target_month = parse_target_month(request.args.get("target_month")) or default_target_month()
    values = copy_from_previous(db_session(), _current_user(), target_month)
    if values is None:
        abort(404)
    return _render_new(values, target_month, copied=True)


@bp.get("/<int:report_id>")
@require_login
def show(report_id: int):
    report = _get_browseable_report(report_id)
    return render_template(
        "monthly_reports/show.html",
        report=report,
        process_labels=WORKING_PROCESS_LABELS,
    )


@bp.get("/<int:report_id>/edit")
@require_login
def edit(report_id: int):
    report = _get_editable_report(report_id)
    return _render_edit(report, report_form_values(report))


@bp.route("/<int:report_id>", methods=["PATCH", "POST"])
@require_login
def update(report_id: int):
    s = db_session()
    report = _get_editable_report(report_id)
    wip = form_flag(request.form.get("wip"))

    result = update_report(s, report, _params(), wip)
    if not result.ok:
        s.rollback()
        return _render_edit(report, result.values, errors=result.errors)

    try:
        s.commit()
    except IntegrityError:
        s.rollback()
        current_app.logger.warning(
            "Monthly report update conflict (report_id=%s request_id=%s)", report.id, g.request_id
        )
        return _render_edit(report, result.values, errors=[CONFLICT_MESSAGE])

    if result.newly_shipped:
        notify_shipped(report)
        flash("Monthly report shipped.", "success")
    else:
        flash("Monthly report updated.", "success")
    return redirect(url_for("monthly_reports.show", report_id=report.id))


# ---------- Comments ----------
def _get_own_comment_or_404(comment_id: int) -> MonthlyReportComment:
    comment = db_session().get(MonthlyReportComment, comment_id)
    if not comment or comment.user_id != _current_user().id:
        abort(404)
    return comment


@bp.post("/<int:report_id>/comments")
@require_login
def comment_create(report_id: int):
    s = db_session()
    report = _get_browseable_report(report_id)
    _, errors = add_comment(s, report, _current_user(), request.form.get("body") or "")
    if errors:
        for e in errors:
            flash(e, "danger")
    else:
        s.commit()
        flash("Comment posted.", "success")
    return redirect(url_for("monthly_reports.show", report_id=report.id))


@bp.get("/comments/<int:comment_id>/edit")
@require_login
def comment_edit(comment_id: int):
    comment = _get_own_comment_or_404(comment_id)
    return render_template(
        "comments/edit.html",
        comment=comment,
        action=url_for("monthly_reports.comment_update", comment_id=comment.id),
        back=url_for("monthly_reports.show", report_id=comment.monthly_report_id),
    )


@bp.post("/comments/<int:comment_id>/edit")
@require_login
def comment_update(comment_id: int):
    s = db_session()
    comment = _get_own_comment_or_404(comment_id)
    body = (request.form.get("body") or "").strip()
    errors = validate_comment_body(body)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("monthly_reports.comment_edit", comment_id=comment.id))
    comment.body = body
    s.commit()
    flash("Comment updated.", "success")
    return redirect(url_for("monthly_reports.show", report_id=comment.monthly_report_id))


@bp.post("/comments/<int:comment_id>/delete")
@require_login
def comment_delete(comment_id: int):
    s = db_session()
    comment = _get_own_comment_or_404(comment_id)
    report_id = comment.monthly_report_id
    s.delete(comment)
    s.commit()
    flash("Comment deleted.", "success")
    return redirect(url_for("monthly_reports.show", report_id=report_id))


# ---------- Likes ----------
@bp.post("/<int:report_id>/likes")
@require_login
def like_create(report_id: int):
    s = db_session()
    report = _get_browseable_report(report_id)
    if not report.shipped:
        abort(404)
    if like(s, report, _current_user()):
        s.commit()
    return redirect(url_for("monthly_reports.show", report_id=report.id))


@bp.post("/<int:report_id>/likes/delete")
@require_login
def like_delete(report_id: int):
    s = db_session()
    report = _get_browseable_report(report_id)
    if unlike(s, report, _current_user()):
        s.commit()
    return redirect(url_for("monthly_reports.show", report_id=report.id))
