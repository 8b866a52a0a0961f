from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, g, redirect, render_template, request, url_for

from app.geppo.db import db_session
from app.geppo.models import User
from app.geppo.modules.articles.models import Article, ArticleComment
from app.geppo.modules.articles.service import (
    add_comment,
    article_form_values,
    create_article,
    draft_articles,
    shipped_articles,
    update_article,
    user_articles,
)
from app.geppo.modules.monthly_reports.service import validate_comment_body
from app.geppo.rbac import require_login
from app.geppo.utils import form_flag, paginate

bp = Blueprint("articles", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _get_user_or_404(user_id: int) -> User:
    user = db_session().get(User, user_id)
    if not user:
        abort(404)
    return user


def _get_browseable_article(article_id: int) -> Article:
    article = db_session().get(Article, article_id)
    if not article:
        abort(404)
    if not article.browseable(g.current_user):
        abort(403)
    return article


def _get_own_article_or_404(article_id: int) -> Article:
    article = db_session().get(Article, article_id)
    if not article or article.user_id != _current_user().id:
        abort(404)
    return article


def _params() -> dict:
    return {k: request.form.get(k) for k in ("title", "body", "tags")}


@bp.get("")
@require_login
def index():
    page = paginate(shipped_articles(db_session()), request.args.get("page"), current_app.config["PER_PAGE"])
    return render_template("articles/index.html", page=page)


@bp.get("/users/<int:user_id>")
@require_login
def user(user_id: int):
    owner = _get_user_or_404(user_id)
    q = user_articles(db_session(), owner, g.current_user)
    page = paginate(q, request.args.get("page"), current_app.config["PER_PAGE"])
    return render_template("articles/user.html", owner=owner, page=page)


@bp.get("/users/<int:user_id>/drafts")
@require_login
def drafts(user_id: int):
    owner = _get_user_or_404(user_id)
    if owner.id != _current_user().id:
        abort(403)
    page = paginate(draft_articles(db_session(), owner), request.args.get("page"), current_app.config["PER_PAGE"])
    return render_template("articles/drafts.html", owner=owner, page=page)


@bp.get("/new")
@require_login
def new():
    return render_template("articles/new.html", values=article_form_values(), errors=[])


@bp.post("")
@require_login
def create():
    s = db_session()
    wip = form_flag(request.form.get("wip"))
    result = create_article(s, _current_user(), _params(), wip)
    if not result.ok:
        s.rollback()
        return render_template("articles/new.html", values=result.values, errors=result.errors)

    s.commit()
    flash("Article shipped." if result.newly_shipped else "Article saved as draft.", "success")
    return redirect(url_for("articles.show", article_id=result.article.id))


@bp.get("/<int:article_id>")
@require_login
def show(article_id: int):
    return render_template("articles/show.html", article=_get_browseable_article(article_id))


@bp.get("/<int:article_id>/edit")
@require_login
def edit(article_id: int):
    article = _get_own_article_or_404(article_id)
    return render_template("articles/edit.html", article=article, values=article_form_values(article), errors=[])


@bp.route("/<int:article_id>", methods=["PATCH", "POST"])
@require_login
def update(article_id: int):
    s = db_session()
    article = _get_own_article_or_404(article_id)
    wip = form_flag(request.form.get("wip"))
    result = update_article(s, article, _params(), wip)
    if not result.ok:
        s.rollback()
        return render_template("articles/edit.html", article=article, values=result.values, errors=result.errors)

    s.commit()
    flash("Article shipped." if result.newly_shipped else "Article updated.", "success")
    return redirect(url_for("articles.show", article_id=article.id))


@bp.post("/<int:article_id>/delete")
@require_login
def delete(article_id: int):
    s = db_session()
    article = _get_own_article_or_404(article_id)
    s.delete(article)
    s.commit()
    flash("Article deleted.", "success")
    return redirect(url_for("articles.user", user_id=_current_user().id))


# ---------- Comments ----------
def _get_own_comment_or_404(comment_id: int) -> ArticleComment:
    comment = db_session().get(ArticleComment, comment_id)
    if not comment or comment.user_id != _current_user().id:
        abort(404)
    return comment


@bp.post("/<int:article_id>/comments")
@require_login
def comment_create(article_id: int):
    s = db_session()
    article = _get_browseable_article(article_id)
    _, errors = add_comment(s, article, _current_user(), request.form.get("body") or "")
    if errors:
        for e in errors:
            flash(e, "danger")
    else:
        s.commit()
        flash("Comment posted.", "success")
    return redirect(url_for("articles.show", article_id=article.id))


@bp.get("/comments/<int:comment_id>/edit")
@require_login
def comment_edit(comment_id: int):
    comment = _get_own_comment_or_404(comment_id)
    return render_template(
        "comments/edit.html",
        comment=comment,
        action=url_for("articles.comment_update", comment_id=comment.id),
        back=url_for("articles.show", article_id=comment.article_id),
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
        return redirect(url_for("articles.comment_edit", comment_id=comment.id))
    comment.body = body
    s.commit()
    flash("Comment updated.", "success")
    return redirect(url_for("articles.show", article_id=comment.article_id))


@bp.post("/comments/<int:comment_id>/delete")
@require_login
def comment_delete(comment_id: int):
    s = db_session()
    comment = _get_own_comment_or_404(comment_id)
    article_id = comment.article_id
    s.delete(comment)
    s.commit()
    flash("Comment deleted.", "success")
    return redirect(url_for("articles.show", article_id=article_id))
