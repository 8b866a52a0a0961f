import pytest
from werkzeug.security import generate_password_hash

from app.geppo import auth, create_app
from app.geppo.db import session_scope
from app.geppo.models import AuditEvent, Base, User
from app.geppo.rbac import ensure_roles_and_permissions


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("MAIL_BACKEND", "memory")
    auth._login_attempts.clear()

    app = create_app()

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        roles = ensure_roles_and_permissions(s)
        s.add_all([
            User(name="Admin", email="admin@example.com", password_hash=generate_password_hash("pw"), role=roles["admin"]),
            User(name="Member", email="member@example.com", password_hash=generate_password_hash("pw"), role=roles["member"]),
        ])

    return app.test_client()


def _login(client, email="admin@example.com", password="pw"):
    return client.post("/auth/login", data={"email": email, "password": password}, follow_redirects=False)


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_root_redirects_to_login_when_anonymous(client):
    r = client.get("/")
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]


def test_login_and_admin_access(client):
    # Anonymous is sent to the login page
    r = client.get("/admin/")
    assert r.status_code == 302

    r = _login(client)
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/monthly_reports")

    r = client.get("/admin/")
    assert r.status_code == 200


def test_member_is_forbidden_from_admin(client):
    _login(client, "member@example.com")
    r = client.get("/admin/")
    assert r.status_code == 403
    assert b"Forbidden" in r.data


def test_login_next_only_allows_local_paths(client):
    r = client.post(
        "/auth/login",
        data={"email": "admin@example.com", "password": "pw", "next": "//evil.example.com/"},
    )
    assert r.status_code == 302
    assert "evil.example.com" not in r.headers["Location"]


def test_failed_login_is_audited(client):
    r = _login(client, password="wrong")
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]
    with session_scope(client.application) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "auth.login_failed").one()
        assert ev.entity_id == "admin@example.com"


def test_logout_clears_session(client):
    _login(client)
    client.get("/auth/logout")
    r = client.get("/monthly_reports")
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]


def test_unknown_page_renders_404(client):
    _login(client)
    r = client.get("/no-such-page")
    assert r.status_code == 404
    assert b"Not found" in r.data


def test_csrf_rejects_posts_without_token(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'csrf.db'}")
    monkeypatch.setenv("ENV", "development")
    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    r = app.test_client().post("/monthly_reports", data={})
    assert r.status_code == 400


def test_production_requires_real_secret(monkeypatch):
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("SECRET_KEY", "change-me")
    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@localhost/geppo")
    with pytest.raises(RuntimeError):
        create_app()
