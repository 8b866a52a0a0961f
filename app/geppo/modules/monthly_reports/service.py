from __future__ import annotations

import calendar
import re
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING

from app.geppo.modules.monthly_reports.models import (
    REPORT_TEXT_FIELDS,
    WORKING_PROCESS_FIELDS,
    MonthlyReport,
    MonthlyReportComment,
    MonthlyReportLike,
    MonthlyWorkingProcess,
)
from app.geppo.modules.tags.service import find_or_create_tags, parse_tag_names, tag_name_errors

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.geppo.models import User


# From this day on, the month in progress becomes the default report month.
DEFAULT_MONTH_SWITCH_DAY = 27
COMMENT_MAX_LENGTH = 1000

DUPLICATE_MONTH_MESSAGE = "A report for this month has already been registered."
CONFLICT_MESSAGE = "Someone else saved a conflicting change at the same time. Please submit again."

_MONTH_RE = re.compile(r"^(\d{4})-(\d{1,2})(?:-(\d{1,2}))?$")


def today() -> date:
    return date.today()


# ---------- Month arithmetic ----------
def beginning_of_month(d: date) -> date:
    return d.replace(day=1)


def prev_month(d: date) -> date:
    if d.month == 1:
        return date(d.year - 1, 12, 1)
    return date(d.year, d.month - 1, 1)


def next_month(d: date) -> date:
    if d.month == 12:
        return date(d.year + 1, 1, 1)
    return date(d.year, d.month + 1, 1)


def default_target_month(on: date | None = None) -> date:
    """
    Month a new report is written for: the previous month, until the last days
    of the month (27th onwards) when the month in progress takes over.
    """
    on = on or today()
    if on.day >= DEFAULT_MONTH_SWITCH_DAY:
        return beginning_of_month(on)
    return prev_month(on)


def parse_target_month(raw: str | None) -> date | None:
    """Accepts YYYY-MM or YYYY-MM-DD; returns the first day of that month."""
    m = _MONTH_RE.match((raw or "").strip())
    if not m:
        return None
    year, month = int(m.group(1)), int(m.group(2))
    if not 1 <= month <= 12 or year < 1:
        return None
    if m.group(3) is not None:
        day = int(m.group(3))
        if not 1 <= day <= calendar.monthrange(year, month)[1]:
            return None
    return date(year, month, 1)


# ---------- Form values ----------
def parse_working_process(names: list[str]) -> dict[str, bool]:
    """Checklist flags from submitted names; names outside the checklist are ignored."""
    selected = {(n or "").strip() for n in names}
    return {name: name in selected for name in WORKING_PROCESS_FIELDS}


def report_form_values(report: MonthlyReport | None = None) -> dict:
    """Values used to render the report form (empty, or taken from `report`)."""
    if report is None:
        values: dict = {name: "" for name in REPORT_TEXT_FIELDS}
        values.update({"tags": "", "working_process": parse_working_process([])})
        return values
    values = {name: getattr(report, name) or "" for name in REPORT_TEXT_FIELDS}
    values["tags"] = ",".join(t.name for t in report.tags)
    wp = report.working_process
    values["working_process"] = wp.processes if wp else parse_working_process([])
    return values


def values_from_params(params: dict) -> dict:
    values = {name: (params.get(name) or "").strip() for name in REPORT_TEXT_FIELDS}
    values["tags"] = (params.get("tags") or "").strip()
    values["working_process"] = parse_working_process(params.get("working_process") or [])
    return values


@dataclass
class ReportResult:
    report: MonthlyReport | None
    values: dict
    errors: list[str] = field(default_factory=list)
    newly_shipped: bool = False

    @property
    def ok(self) -> bool:
        return not self.errors


def validate_report_values(values: dict, tag_names: list[str], *, shipping: bool) -> list[str]:
    """Shipped reports need every text field and at least one tag; wip reports need nothing."""
    if not shipping:
        return []
    errors = []
    labels = {
        "business_content": "Business content",
        "looking_back": "Looking back",
        "project_summary": "Project summary",
        "next_month_goals": "Next month goals",
    }
    for name in REPORT_TEXT_FIELDS:
        if not values.get(name):
            errors.append(f"{labels[name]} can't be blank.")
    if not tag_names:
        errors.append("Tags can't be blank.")
    return errors


def _apply(s: "Session", report: MonthlyReport, values: dict, tags: list) -> None:
    for name in REPORT_TEXT_FIELDS:
        setattr(report, name, values[name] or None)
    report.tags = tags
    if report.working_process is None:
        report.working_process = MonthlyWorkingProcess()
    report.working_process.assign(values["working_process"])


# ---------- Workflow ----------
def find_report(s: "Session", user: "User", target_month: date) -> MonthlyReport | None:
    return (
        s.query(MonthlyReport)
        .filter(MonthlyReport.user_id == user.id, MonthlyReport.target_month == target_month)
        .one_or_none()
    )


def create_report(s: "Session", user: "User", params: dict, wip: bool) -> ReportResult:
    """
    Build and add a report for `user`. Nothing is added to the session when
    validation fails. `newly_shipped` tells the caller to send the ship
    notification once the transaction has been committed.
    """
    values = values_from_params(params)
    target_month = parse_target_month(params.get("target_month"))
    values["target_month"] = target_month

    tag_names = parse_tag_names(values["tags"])
    errors: list[str] = []
    if target_month is None:
        errors.append("Target month can't be blank.")
    elif find_report(s, user, target_month) is not None:
        errors.append(DUPLICATE_MONTH_MESSAGE)
    errors.extend(validate_report_values(values, tag_names, shipping=not wip))
    errors.extend(tag_name_errors(s, tag_names))
    if errors:
        return ReportResult(report=None, values=values, errors=errors)
    tags, _ = find_or_create_tags(s, tag_names)

    report = MonthlyReport(user_id=user.id, user=user, target_month=target_month)
    _apply(s, report, values, tags)
    newly_shipped = False if wip else report.ship()
    s.add(report)
    return ReportResult(report=report, values=values, newly_shipped=newly_shipped)


def update_report(s: "Session", report: MonthlyReport, params: dict, wip: bool) -> ReportResult:
    """
    Apply form values to an existing report. `wip` keeps a draft a draft but
    never takes a shipped report back; only a wip -> shipped move sets
    `newly_shipped`.
    """
    values = values_from_params(params)
    values["target_month"] = report.target_month
    tag_names = parse_tag_names(values["tags"])

    shipping = report.shipped or not wip
    errors = validate_report_values(values, tag_names, shipping=shipping)
    errors.extend(tag_name_errors(s, tag_names))
    if errors:
        return ReportResult(report=report, values=values, errors=errors)
    tags, _ = find_or_create_tags(s, tag_names)

    _apply(s, report, values, tags)
    newly_shipped = False if wip else report.ship()
    s.flush()
    return ReportResult(report=report, values=values, newly_shipped=newly_shipped)


def previous_report(s: "Session", user: "User", target_month: date) -> MonthlyReport | None:
    return find_report(s, user, prev_month(target_month))


def copy_from_previous(s: "Session", user: "User", target_month: date) -> dict | None:
    """
    Prefill values for a new report for `target_month` from the user's report of
    the month before. None when there is no such report. Nothing is persisted.
    """
    source = previous_report(s, user, target_month)
    if source is None:
        return None
    values = report_form_values(source)
    values["target_month"] = target_month
    return values


def editable(report: MonthlyReport, user: "User | None", requested_month: date | None, on: date | None = None) -> bool:
    """
    Owners may edit the report of the current default month, or the report whose
    month is named explicitly by the request.
    """
    if user is None or report.user_id != user.id:
        return False
    if report.target_month == default_target_month(on):
        return True
    return requested_month is not None and requested_month == report.target_month


def visibility(report: MonthlyReport, viewer: "User | None") -> bool:
    return report.browseable(viewer)


# ---------- Listings ----------
def shipped_reports(s: "Session"):
    return (
        s.query(MonthlyReport)
        .filter(MonthlyReport.shipped_at.isnot(None))
        .order_by(MonthlyReport.target_month.desc(), MonthlyReport.shipped_at.desc(), MonthlyReport.id.desc())
    )


def user_reports_for_year(s: "Session", owner: "User", viewer: "User | None", year: int) -> dict[date, MonthlyReport | None]:
    """One slot per month of `year`; other users only see shipped reports."""
    q = s.query(MonthlyReport).filter(
        MonthlyReport.user_id == owner.id,
        MonthlyReport.target_month >= date(year, 1, 1),
        MonthlyReport.target_month <= date(year, 12, 1),
    )
    if viewer is None or viewer.id != owner.id:
        q = q.filter(MonthlyReport.shipped_at.isnot(None))
    by_month = {r.target_month: r for r in q.all()}
    return {date(year, m, 1): by_month.get(date(year, m, 1)) for m in range(1, 13)}


# ---------- Comments / likes ----------
def validate_comment_body(body: str) -> list[str]:
    if not body:
        return ["Comment can't be blank."]
    if len(body) > COMMENT_MAX_LENGTH:
        return [f"Comment is too long (maximum is {COMMENT_MAX_LENGTH} characters)."]
    return []


def add_comment(s: "Session", report: MonthlyReport, user: "User", body: str) -> tuple[MonthlyReportComment | None, list[str]]:
    body = (body or "").strip()
    errors = validate_comment_body(body)
    if errors:
        return None, errors
    comment = MonthlyReportComment(monthly_report=report, user_id=user.id, user=user, body=body)
    s.add(comment)
    s.flush()
    return comment, []


def like(s: "Session", report: MonthlyReport, user: "User") -> bool:
    """Returns False when the user already likes the report."""
    if report.liked_by(user):
        return False
    s.add(MonthlyReportLike(monthly_report=report, user_id=user.id))
    s.flush()
    return True


def unlike(s: "Session", report: MonthlyReport, user: "User") -> bool:
    for existing in list(report.likes):
        if existing.user_id == user.id:
            report.likes.remove(existing)
            s.flush()
            return True
    return False
