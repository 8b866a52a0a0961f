from __future__ import annotations

from flask import current_app, g, url_for

from app.geppo.mailer import MailError, MailMessage, get_mailer
from app.geppo.modules.monthly_reports.models import MonthlyReport


def build_ship_message(report: MonthlyReport, *, from_addr: str, to_addr: str, report_url: str) -> MailMessage:
    month = report.target_month.strftime("%Y-%m")
    tags = ", ".join(t.name for t in report.tags)
    body = (
        f"{report.user.name} shipped the monthly report for {month}.\n"
        f"\n"
        f"Tags: {tags}\n"
        f"\n"
        f"{report_url}\n"
    )
    return MailMessage(
        subject=f"[Monthly report] {report.user.name} ({month})",
        body=body,
        from_addr=from_addr,
        to_addrs=(to_addr,),
    )


def notify_shipped(report: MonthlyReport) -> bool:
    """
    Send the ship notification for a report that just moved wip -> shipped.
    Called after commit; a failed delivery is logged and does not undo the ship.
    """
    to_addr = (current_app.config.get("REPORT_NOTIFY_TO") or "").strip()
    if not to_addr:
        current_app.logger.warning("REPORT_NOTIFY_TO not set; skipping ship notification (report_id=%s)", report.id)
        return False

    message = build_ship_message(
        report,
        from_addr=current_app.config.get("MAIL_FROM") or "",
        to_addr=to_addr,
        report_url=url_for("monthly_reports.show", report_id=report.id, _external=True),
    )
    try:
        get_mailer(current_app).send(message)
    except MailError:
        current_app.logger.exception(
            "Ship notification failed (report_id=%s request_id=%s)", report.id, getattr(g, "request_id", None)
        )
        return False
    return True
