from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from app.geppo.modules.articles.models import BODY_MAX_LENGTH, TITLE_MAX_LENGTH, Article, ArticleComment
from app.geppo.modules.monthly_reports.service import validate_comment_body
from app.geppo.modules.tags.service import find_or_create_tags, parse_tag_names, tag_name_errors

if TYPE_CHECKING:
    from sqlalchemy.orm import Query, Session
    from app.geppo.models import User


@dataclass
class ArticleResult:
    article: Article | None
    values: dict
    errors: list[str] = field(default_factory=list)
    newly_shipped: bool = False

    @property
    def ok(self) -> bool:
        return not self.errors


def article_form_values(article: Article | None = None) -> dict:
    if article is None:
        return {"title": "", "body": "", "tags": ""}
    return {
        "title": article.title or "",
        "body": article.body or "",
        "tags": ",".join(t.name for t in article.tags),
    }


def values_from_params(params: dict) -> dict:
    return {
        "title": (params.get("title") or "").strip(),
        "body": (params.get("body") or "").strip(),
        "tags": (params.get("tags") or "").strip(),
    }


def validate_article_values(values: dict, tag_names: list[str], *, shipping: bool) -> list[str]:
    """Lengths are always checked; presence only once the article is shipped."""
    errors = []
    if len(values["title"]) > TITLE_MAX_LENGTH:
        errors.append(f"Title is too long (maximum is {TITLE_MAX_LENGTH} characters).")
    if len(values["body"]) > BODY_MAX_LENGTH:
        errors.append(f"Body is too long (maximum is {BODY_MAX_LENGTH} characters).")
    if shipping:
        if not values["title"]:
            errors.append("Title can't be blank.")
        if not values["body"]:
            errors.append("Body can't be blank.")
        if not tag_names:
            errors.append("Tags can't be blank.")
    return errors


def _save(s: "Session", article: Article, params: dict, wip: bool) -> ArticleResult:
    values = values_from_params(params)
    tag_names = parse_tag_names(values["tags"])
    shipping = article.shipped or not wip

    errors = validate_article_values(values, tag_names, shipping=shipping)
    errors.extend(tag_name_errors(s, tag_names))
    if errors:
        return ArticleResult(article=article, values=values, errors=errors)

    tags, _ = find_or_create_tags(s, tag_names)
    article.title = values["title"] or None
    article.body = values["body"] or None
    newly_shipped = article.assign_relational_params(wip, tags)
    return ArticleResult(article=article, values=values, newly_shipped=newly_shipped)


def create_article(s: "Session", user: "User", params: dict, wip: bool) -> ArticleResult:
    article = Article(user_id=user.id, user=user)
    result = _save(s, article, params, wip)
    if result.ok:
        s.add(article)
        s.flush()
    else:
        result.article = None
    return result


def update_article(s: "Session", article: Article, params: dict, wip: bool) -> ArticleResult:
    result = _save(s, article, params, wip)
    if result.ok:
        s.flush()
    return result


# ---------- Listings ----------
def shipped_articles(s: "Session") -> "Query[Article]":
    return s.query(Article).filter(Article.shipped_at.isnot(None)).order_by(Article.shipped_at.desc(), Article.id.desc())


def user_articles(s: "Session", owner: "User", viewer: "User | None") -> "Query[Article]":
    """The owner's shipped articles; their own drafts too when they look at themselves."""
    q = s.query(Article).filter(Article.user_id == owner.id)
    if viewer is None or viewer.id != owner.id:
        q = q.filter(Article.shipped_at.isnot(None))
    return q.order_by(Article.updated_at.desc(), Article.id.desc())


def draft_articles(s: "Session", owner: "User") -> "Query[Article]":
    return (
        s.query(Article)
        .filter(Article.user_id == owner.id, Article.shipped_at.is_(None))
        .order_by(Article.updated_at.desc(), Article.id.desc())
    )


# ---------- Comments ----------
def add_comment(s: "Session", article: Article, user: "User", body: str) -> tuple[ArticleComment | None, list[str]]:
    body = (body or "").strip()
    errors = validate_comment_body(body)
    if errors:
        return None, errors
    comment = ArticleComment(article=article, user_id=user.id, user=user, body=body)
    s.add(comment)
    s.flush()
    return comment, []
