"""Tests for articles (draft/ship, visibility, ownership)."""
from datetime import datetime

import pytest
from werkzeug.security import generate_password_hash

from app.geppo import auth, create_app
from app.geppo.db import session_scope
from app.geppo.models import Base, User
from app.geppo.modules.articles.models import Article, ArticleComment
from app.geppo.modules.tags.models import Tag
from app.geppo.rbac import ensure_roles_and_permissions


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("MAIL_BACKEND", "memory")
    auth._login_attempts.clear()

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


def _seed_article(client, *, owner="alice", shipped=False, title="Hello") -> int:
    user_id = _user_id(client, owner)
    with session_scope(client.application) as s:
        article = Article(
            user_id=user_id,
            title=title,
            body="Body text",
            shipped_at=datetime(2024, 5, 1) if shipped else None,
        )
        s.add(article)
        s.flush()
        return article.id


def test_create_shipped_article(client):
    _login(client)
    r = client.post("/articles", data={"title": "Flask tips", "body": "Use blueprints.", "tags": "python,flask"})
    assert r.status_code == 302
    with session_scope(client.application) as s:
        article = s.query(Article).one()
        assert article.shipped_at is not None
        assert [t.name for t in article.tags] == ["python", "flask"]


def test_create_draft_needs_no_tags(client):
    _login(client)
    r = client.post("/articles", data={"title": "Idea", "body": "", "tags": "", "wip": "1"})
    assert r.status_code == 302
    with session_scope(client.application) as s:
        article = s.query(Article).one()
        assert article.shipped_at is None
        assert article.body is None


def test_shipped_article_requires_title_body_and_tags(client):
    _login(client)
    r = client.post("/articles", data={"title": "", "body": "", "tags": ""})
    assert r.status_code == 200
    assert b"Title can" in r.data
    assert b"Body can" in r.data
    assert b"Tags can" in r.data
    with session_scope(client.application) as s:
        assert s.query(Article).count() == 0


def test_lengths_are_checked_for_drafts_too(client):
    _login(client)
    r = client.post("/articles", data={"title": "x" * 101, "body": "ok", "wip": "1"})
    assert r.status_code == 200
    assert b"Title is too long" in r.data
    r = client.post("/articles", data={"title": "ok", "body": "y" * 5001, "wip": "1"})
    assert r.status_code == 200
    assert b"Body is too long" in r.data


def test_invalid_tag_name_creates_nothing(client):
    _login(client)
    r = client.post("/articles", data={"title": "T", "body": "B", "tags": "ok, <script>"})
    assert r.status_code == 200
    with session_scope(client.application) as s:
        assert s.query(Article).count() == 0
        assert s.query(Tag).count() == 0


def test_draft_visible_only_to_owner(client):
    article_id = _seed_article(client)
    _login(client, "bob")
    assert client.get(f"/articles/{article_id}").status_code == 403
    assert client.get("/articles/9999").status_code == 404

    owner = client.application.test_client()
    _login(owner, "alice")
    assert owner.get(f"/articles/{article_id}").status_code == 200


def test_index_lists_shipped_articles(client):
    _seed_article(client, shipped=True, title="Public post")
    _seed_article(client, title="Secret draft")
    _login(client, "bob")
    r = client.get("/articles")
    assert r.status_code == 200
    assert b"Public post" in r.data
    assert b"Secret draft" not in r.data


def test_user_page_shows_own_drafts_only_to_self(client):
    _seed_article(client, shipped=True, title="Public post")
    _seed_article(client, title="Secret draft")
    alice_id = _user_id(client)

    _login(client, "bob")
    r = client.get(f"/articles/users/{alice_id}")
    assert b"Public post" in r.data
    assert b"Secret draft" not in r.data

    owner = client.application.test_client()
    _login(owner, "alice")
    r = owner.get(f"/articles/users/{alice_id}")
    assert b"Secret draft" in r.data


def test_drafts_page_is_owner_only(client):
    _seed_article(client, title="Secret draft")
    alice_id = _user_id(client)
    _login(client, "bob")
    assert client.get(f"/articles/users/{alice_id}/drafts").status_code == 403

    owner = client.application.test_client()
    _login(owner, "alice")
    r = owner.get(f"/articles/users/{alice_id}/drafts")
    assert r.status_code == 200
    assert b"Secret draft" in r.data


def test_edit_and_update_by_non_owner_is_404(client):
    article_id = _seed_article(client, shipped=True)
    _login(client, "bob")
    assert client.get(f"/articles/{article_id}/edit").status_code == 404
    assert client.post(f"/articles/{article_id}", data={"title": "mine now", "body": "x", "tags": "a"}).status_code == 404
    assert client.post(f"/articles/{article_id}/delete").status_code == 404


def test_update_ships_draft_and_replaces_tags(client):
    _login(client)
    client.post("/articles", data={"title": "T", "body": "B", "tags": "old", "wip": "1"})
    with session_scope(client.application) as s:
        article_id = s.query(Article).one().id

    r = client.post(f"/articles/{article_id}", data={"title": "T", "body": "B", "tags": "new1, new2"})
    assert r.status_code == 302
    with session_scope(client.application) as s:
        article = s.get(Article, article_id)
        assert article.shipped_at is not None
        assert [t.name for t in article.tags] == ["new1", "new2"]


def test_owner_can_delete(client):
    article_id = _seed_article(client)
    _login(client)
    r = client.post(f"/articles/{article_id}/delete")
    assert r.status_code == 302
    with session_scope(client.application) as s:
        assert s.get(Article, article_id) is None


def test_comment_on_shipped_article(client):
    article_id = _seed_article(client, shipped=True)
    _login(client, "bob")
    r = client.post(f"/articles/{article_id}/comments", data={"body": "Great read"})
    assert r.status_code == 302
    with session_scope(client.application) as s:
        assert s.query(ArticleComment).one().body == "Great read"


def test_cannot_comment_on_someone_elses_draft(client):
    article_id = _seed_article(client)
    _login(client, "bob")
    assert client.post(f"/articles/{article_id}/comments", data={"body": "sneaky"}).status_code == 403
