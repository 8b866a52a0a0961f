"""Tests for the monthly report workflow (create / ship / copy / edit window)."""
from datetime import date, datetime

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

from app.geppo import auth, create_app
from app.geppo.db import session_scope
from app.geppo.mailer import MailError, Mailer
from app.geppo.models import Base, User
from app.geppo.modules.monthly_reports import service
from app.geppo.modules.monthly_reports.models import (
    MonthlyReport,
    MonthlyReportComment,
    MonthlyReportLike,
    MonthlyWorkingProcess,
    WORKING_PROCESS_FIELDS,
)
from app.geppo.modules.tags.models import Tag
from app.geppo.rbac import ensure_roles_and_permissions


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("MAIL_BACKEND", "memory")
    monkeypatch.setenv("REPORT_NOTIFY_TO", "reports@example.com")
    auth._login_attempts.clear()
    # 2024-05-10: the default report month is April.
    monkeypatch.setattr(service, "today", lambda: date(2024, 5, 10))

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        roles = ensure_roles_and_permissions(s)
        for name in ("Alice", "Bob"):
            s.add(
                User(
                    name=name,
                    email=f"{name.lower()}@example.com",
                    password_hash=generate_password_hash("pw"),
                    role=roles["member"],
                )
            )

    return app.test_client()


def _login(client, name="alice"):
    client.post("/auth/login", data={"email": f"{name}@example.com", "password": "pw"})


def _user_id(client, name="alice") -> int:
    with session_scope(client.application) as s:
        return s.query(User).filter(User.email == f"{name}@example.com").one().id


def _seed_report(client, month: date, *, owner="alice", shipped=False, tag_names=("python",), content="done") -> int:
    user_id = _user_id(client, owner)
    with session_scope(client.application) as s:
        tags = []
        for tag_name in tag_names:
            tag = s.query(Tag).filter(Tag.name == tag_name).one_or_none()
            if tag is None:
                tag = Tag(name=tag_name)
                s.add(tag)
            tags.append(tag)
        report = MonthlyReport(
            user_id=user_id,
            target_month=month,
            business_content=content,
            looking_back="went fine",
            project_summary="project",
            next_month_goals="more",
            shipped_at=datetime(2024, 5, 1, 9, 0) if shipped else None,
        )
        report.tags = tags
        report.working_process = MonthlyWorkingProcess(implementation=True)
        s.add(report)
        s.flush()
        return report.id


def _get_report(client, report_id: int) -> MonthlyReport:
    with session_scope(client.application) as s:
        return s.get(MonthlyReport, report_id)


def _outbox(client) -> list:
    return client.application.extensions["mailer"].outbox


def _full_form(**overrides) -> dict:
    data = {
        "target_month": "2024-04",
        "business_content": "Built the thing",
        "looking_back": "Good month",
        "project_summary": "Project X",
        "next_month_goals": "Ship it",
        "tags": "python, flask",
        "working_process": ["implementation", "unit_test"],
    }
    data.update(overrides)
    return data


# ---------- month helpers ----------
@pytest.mark.parametrize(
    "today, expected",
    [
        (date(2024, 5, 26), date(2024, 4, 1)),
        (date(2024, 5, 27), date(2024, 5, 1)),
        (date(2024, 5, 31), date(2024, 5, 1)),
        (date(2024, 1, 3), date(2023, 12, 1)),
    ],
)
def test_default_target_month_switches_on_the_27th(today, expected):
    assert service.default_target_month(today) == expected


def test_parse_target_month():
    assert service.parse_target_month("2024-04") == date(2024, 4, 1)
    assert service.parse_target_month("2024-04-15") == date(2024, 4, 1)
    assert service.parse_target_month("2024-13") is None
    assert service.parse_target_month("2024-02-30") is None
    assert service.parse_target_month("") is None
    assert service.parse_target_month(None) is None


def test_parse_working_process_ignores_unknown_names():
    flags = service.parse_working_process(["implementation", "astrology", ""])
    assert flags["implementation"] is True
    assert "astrology" not in flags
    assert sum(flags.values()) == 1


# ---------- listing / visibility ----------
def test_index_requires_login(client):
    r = client.get("/monthly_reports")
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]


def test_index_lists_shipped_reports_only(client):
    shipped_id = _seed_report(client, date(2024, 4, 1), shipped=True)
    wip_id = _seed_report(client, date(2024, 4, 1), owner="bob")
    _login(client)
    r = client.get("/monthly_reports")
    assert r.status_code == 200
    assert f"/monthly_reports/{shipped_id}".encode() in r.data
    assert f"/monthly_reports/{wip_id}\"".encode() not in r.data


def test_index_page_out_of_range_is_404(client):
    _login(client)
    assert client.get("/monthly_reports?page=2").status_code == 404
    assert client.get("/monthly_reports?page=abc").status_code == 404


def test_show_respects_browseability(client):
    wip_id = _seed_report(client, date(2024, 4, 1))
    shipped_id = _seed_report(client, date(2024, 3, 1), shipped=True)

    _login(client, "bob")
    assert client.get(f"/monthly_reports/{wip_id}").status_code == 403
    assert client.get(f"/monthly_reports/{shipped_id}").status_code == 200
    assert client.get("/monthly_reports/9999").status_code == 404

    owner = client.application.test_client()
    _login(owner, "alice")
    assert owner.get(f"/monthly_reports/{wip_id}").status_code == 200


def test_user_page(client):
    _seed_report(client, date(2024, 4, 1), shipped=True)
    alice_id = _user_id(client)
    _login(client)
    assert client.get(f"/monthly_reports/users/{alice_id}?target_year=2024").status_code == 200
    assert client.get(f"/monthly_reports/users/{alice_id}?target_year=abc").status_code == 404
    assert client.get("/monthly_reports/users/9999").status_code == 404


# ---------- new / copy ----------
def test_new_form_uses_default_month(client, monkeypatch):
    _login(client)
    monkeypatch.setattr(service, "today", lambda: date(2024, 5, 26))
    r = client.get("/monthly_reports/new")
    assert r.status_code == 200
    assert b'value="2024-04"' in r.data

    monkeypatch.setattr(service, "today", lambda: date(2024, 5, 27))
    r = client.get("/monthly_reports/new")
    assert b'value="2024-05"' in r.data


def test_new_form_offers_copy_only_when_previous_month_exists(client):
    _login(client)
    r = client.get("/monthly_reports/new")
    assert b"Copy last month" not in r.data

    _seed_report(client, date(2024, 3, 1))
    r = client.get("/monthly_reports/new")
    assert b"Copy last month" in r.data


def test_copy_without_previous_report_is_404(client):
    _login(client)
    assert client.get("/monthly_reports/copy?target_month=2024-04").status_code == 404


def test_copy_prefills_from_previous_month_without_saving(client):
    _seed_report(client, date(2024, 3, 1), content="March work", tag_names=("python", "sql"))
    _login(client)
    r = client.get("/monthly_reports/copy?target_month=2024-04")
    assert r.status_code == 200
    assert b"March work" in r.data
    assert b"python,sql" in r.data
    with session_scope(client.application) as s:
        assert s.query(MonthlyReport).count() == 1


def test_copy_carries_working_process_flags(client):
    _seed_report(client, date(2024, 3, 1))
    alice_id = _user_id(client)
    with session_scope(client.application) as s:
        alice = s.get(User, alice_id)
        values = service.copy_from_previous(s, alice, date(2024, 4, 1))
    assert values["working_process"] == {name: name == "implementation" for name in WORKING_PROCESS_FIELDS}

    _login(client)
    r = client.get("/monthly_reports/copy?target_month=2024-04")
    assert r.data.count(b" checked>") == 1
    assert b'value="implementation" checked>' in r.data


# ---------- create ----------
def test_create_shipped_sends_one_notification(client):
    _login(client)
    r = client.post("/monthly_reports", data=_full_form(working_process=["implementation", "astrology"]))
    assert r.status_code == 302

    with session_scope(client.application) as s:
        report = s.query(MonthlyReport).one()
        assert report.shipped_at is not None
        assert report.target_month == date(2024, 4, 1)
        assert [t.name for t in report.tags] == ["python", "flask"]
        assert report.working_process.implementation is True
        assert report.working_process.unit_test is False
        assert r.headers["Location"].endswith(f"/monthly_reports/{report.id}")

    outbox = _outbox(client)
    assert len(outbox) == 1
    assert outbox[0].to_addrs == ("reports@example.com",)
    assert "2024-04" in outbox[0].subject


def test_create_wip_saves_without_mail(client):
    _login(client)
    r = client.post(
        "/monthly_reports",
        data={"target_month": "2024-04", "business_content": "half done", "wip": "1"},
    )
    assert r.status_code == 302
    with session_scope(client.application) as s:
        report = s.query(MonthlyReport).one()
        assert report.shipped_at is None
        assert report.looking_back is None
        assert report.tags == []
    assert _outbox(client) == []


def test_create_shipped_requires_all_fields(client):
    _login(client)
    r = client.post("/monthly_reports", data=_full_form(looking_back="", tags="brand-new"))
    assert r.status_code == 200
    assert b"Looking back can" in r.data
    with session_scope(client.application) as s:
        assert s.query(MonthlyReport).count() == 0
        assert s.query(Tag).count() == 0
    assert _outbox(client) == []


def test_create_shipped_requires_tags(client):
    _login(client)
    r = client.post("/monthly_reports", data=_full_form(tags=" , "))
    assert r.status_code == 200
    assert b"Tags can" in r.data


def test_create_rejects_invalid_tag_names(client):
    _login(client)
    r = client.post("/monthly_reports", data=_full_form(tags="python, bad!tag"))
    assert r.status_code == 200
    assert b"contains characters that are not allowed" in r.data
    with session_scope(client.application) as s:
        assert s.query(MonthlyReport).count() == 0


def test_create_rejects_duplicate_month(client):
    _seed_report(client, date(2024, 4, 1))
    _login(client)
    r = client.post("/monthly_reports", data=_full_form())
    assert r.status_code == 200
    assert b"already been registered" in r.data
    assert _outbox(client) == []


def test_create_without_target_month_is_a_validation_error(client):
    _login(client)
    r = client.post("/monthly_reports", data=_full_form(target_month=""))
    assert r.status_code == 200
    assert b"Target month can" in r.data


def test_create_reuses_existing_tags(client):
    _seed_report(client, date(2024, 3, 1), tag_names=("python",))
    _login(client)
    client.post("/monthly_reports", data=_full_form(tags="python、flask"))
    with session_scope(client.application) as s:
        assert sorted(t.name for t in s.query(Tag).all()) == ["flask", "python"]


def test_ship_without_recipient_skips_mail(client):
    client.application.config["REPORT_NOTIFY_TO"] = ""
    _login(client)
    r = client.post("/monthly_reports", data=_full_form())
    assert r.status_code == 302
    assert _outbox(client) == []
    with session_scope(client.application) as s:
        assert s.query(MonthlyReport).one().shipped_at is not None


def test_mail_failure_keeps_report_shipped(client):
    class FailingMailer(Mailer):
        def send(self, message):
            raise MailError("smtp down")

    client.application.extensions["mailer"] = FailingMailer()
    _login(client)
    r = client.post("/monthly_reports", data=_full_form())
    assert r.status_code == 302
    with session_scope(client.application) as s:
        assert s.query(MonthlyReport).one().shipped_at is not None


# ---------- edit / update ----------
def test_edit_inside_window(client):
    report_id = _seed_report(client, date(2024, 4, 1))
    _login(client)
    r = client.get(f"/monthly_reports/{report_id}/edit")
    assert r.status_code == 200
    assert b"Edit monthly report" in r.data


def test_edit_outside_window_is_404_unless_month_requested(client):
    report_id = _seed_report(client, date(2024, 2, 1))
    _login(client)
    assert client.get(f"/monthly_reports/{report_id}/edit").status_code == 404
    assert client.get(f"/monthly_reports/{report_id}/edit?target_month=2024-03").status_code == 404
    assert client.get(f"/monthly_reports/{report_id}/edit?target_month=2024-02").status_code == 200


def test_edit_by_other_user_is_404(client):
    report_id = _seed_report(client, date(2024, 4, 1))
    _login(client, "bob")
    assert client.get(f"/monthly_reports/{report_id}/edit").status_code == 404
    r = client.post(f"/monthly_reports/{report_id}", data=_full_form(business_content="hijacked"))
    assert r.status_code == 404
    assert _get_report(client, report_id).business_content == "done"


def test_update_outside_window_leaves_report_untouched(client):
    report_id = _seed_report(client, date(2024, 1, 1))
    _login(client)
    r = client.post(f"/monthly_reports/{report_id}", data=_full_form(target_month="", business_content="changed"))
    assert r.status_code == 404
    assert _get_report(client, report_id).business_content == "done"


def test_update_with_own_month_saves_after_window_moved(client):
    # The edit form posts the report's own month back as target_month.
    report_id = _seed_report(client, date(2024, 2, 1))
    _login(client)
    r = client.post(f"/monthly_reports/{report_id}", data=_full_form(target_month="2024-02", business_content="late"))
    assert r.status_code == 302
    assert _get_report(client, report_id).business_content == "late"


def _fail_commits(monkeypatch):
    """Make every commit fail like a lost unique-constraint race; returns the real commit."""
    real_commit = Session.commit

    def commit(self):
        raise IntegrityError("INSERT INTO tags", {}, Exception("UNIQUE constraint failed: tags.name"))

    monkeypatch.setattr(Session, "commit", commit)
    return real_commit


def test_create_conflict_on_commit_rerenders_form(client, monkeypatch):
    _login(client)
    real_commit = _fail_commits(monkeypatch)
    r = client.post("/monthly_reports", data=_full_form(tags="brand-new"))
    monkeypatch.setattr(Session, "commit", real_commit)

    assert r.status_code == 200
    assert b"conflicting change" in r.data
    assert b"already been registered" not in r.data
    assert _outbox(client) == []
    with session_scope(client.application) as s:
        assert s.query(MonthlyReport).count() == 0


def test_update_conflict_on_commit_rerenders_form(client, monkeypatch):
    report_id = _seed_report(client, date(2024, 4, 1))
    _login(client)
    real_commit = _fail_commits(monkeypatch)
    r = client.post(f"/monthly_reports/{report_id}", data=_full_form(tags="brand-new"))
    monkeypatch.setattr(Session, "commit", real_commit)

    assert r.status_code == 200
    assert b"conflicting change" in r.data
    assert _outbox(client) == []
    report = _get_report(client, report_id)
    assert report.shipped_at is None
    assert report.business_content == "done"


def test_update_wip_to_shipped_notifies_once(client):
    report_id = _seed_report(client, date(2024, 4, 1))
    _login(client)

    r = client.post(f"/monthly_reports/{report_id}", data=_full_form())
    assert r.status_code == 302
    first = _get_report(client, report_id).shipped_at
    assert first is not None
    assert len(_outbox(client)) == 1

    r = client.post(f"/monthly_reports/{report_id}", data=_full_form(business_content="edited"))
    assert r.status_code == 302
    report = _get_report(client, report_id)
    assert report.business_content == "edited"
    assert report.shipped_at == first
    assert len(_outbox(client)) == 1


def test_update_as_wip_keeps_draft_without_mail(client):
    report_id = _seed_report(client, date(2024, 4, 1))
    _login(client)
    r = client.post(f"/monthly_reports/{report_id}", data={"business_content": "draft edit", "wip": "1"})
    assert r.status_code == 302
    report = _get_report(client, report_id)
    assert report.shipped_at is None
    assert report.business_content == "draft edit"
    assert _outbox(client) == []


def test_wip_flag_does_not_unship(client):
    report_id = _seed_report(client, date(2024, 4, 1), shipped=True)
    _login(client)
    r = client.post(f"/monthly_reports/{report_id}", data=_full_form(wip="1"))
    assert r.status_code == 302
    assert _get_report(client, report_id).shipped_at == datetime(2024, 5, 1, 9, 0)
    assert _outbox(client) == []


def test_update_shipped_report_still_requires_fields(client):
    report_id = _seed_report(client, date(2024, 4, 1), shipped=True)
    _login(client)
    r = client.post(f"/monthly_reports/{report_id}", data=_full_form(project_summary=""))
    assert r.status_code == 200
    assert b"Project summary can" in r.data
    assert _get_report(client, report_id).project_summary == "project"


def test_update_replaces_working_process(client):
    report_id = _seed_report(client, date(2024, 4, 1))
    _login(client)
    client.post(f"/monthly_reports/{report_id}", data=_full_form(working_process=["basic_design", "nonsense"]))
    with session_scope(client.application) as s:
        wp = s.get(MonthlyReport, report_id).working_process
        assert wp.processes["basic_design"] is True
        assert wp.processes["implementation"] is False


# ---------- comments / likes ----------
def test_comment_and_like_on_shipped_report(client):
    report_id = _seed_report(client, date(2024, 4, 1), shipped=True)
    _login(client, "bob")

    r = client.post(f"/monthly_reports/{report_id}/comments", data={"body": "Nice work"})
    assert r.status_code == 302
    client.post(f"/monthly_reports/{report_id}/likes")
    client.post(f"/monthly_reports/{report_id}/likes")

    with session_scope(client.application) as s:
        assert s.query(MonthlyReportComment).one().body == "Nice work"
        assert s.query(MonthlyReportLike).count() == 1

    client.post(f"/monthly_reports/{report_id}/likes/delete")
    with session_scope(client.application) as s:
        assert s.query(MonthlyReportLike).count() == 0


def test_blank_comment_is_not_saved(client):
    report_id = _seed_report(client, date(2024, 4, 1), shipped=True)
    _login(client, "bob")
    client.post(f"/monthly_reports/{report_id}/comments", data={"body": "   "})
    with session_scope(client.application) as s:
        assert s.query(MonthlyReportComment).count() == 0


def test_like_on_draft_is_404(client):
    report_id = _seed_report(client, date(2024, 4, 1))
    _login(client)
    assert client.post(f"/monthly_reports/{report_id}/likes").status_code == 404


def test_only_author_can_edit_comment(client):
    report_id = _seed_report(client, date(2024, 4, 1), shipped=True)
    _login(client, "bob")
    client.post(f"/monthly_reports/{report_id}/comments", data={"body": "first"})
    with session_scope(client.application) as s:
        comment_id = s.query(MonthlyReportComment).one().id

    r = client.post(f"/monthly_reports/comments/{comment_id}/edit", data={"body": "second"})
    assert r.status_code == 302

    other = client.application.test_client()
    _login(other, "alice")
    assert other.get(f"/monthly_reports/comments/{comment_id}/edit").status_code == 404
    assert other.post(f"/monthly_reports/comments/{comment_id}/delete").status_code == 404

    with session_scope(client.application) as s:
        assert s.get(MonthlyReportComment, comment_id).body == "second"
