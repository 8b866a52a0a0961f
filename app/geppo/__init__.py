import logging
from datetime import timedelta

from flask import Flask, g, render_template, request, session
from dotenv import load_dotenv

from app.geppo.config import load_config
from app.geppo.db import init_db, teardown_db_session
from app.geppo.mailer import init_mailer
from app.geppo.routes import bp as routes_bp
from app.geppo.auth import bp as auth_bp, load_current_user
from app.geppo.admin import bp as admin_bp
from app.geppo.modules.tags.admin import bp as tags_admin_bp
from app.geppo.modules.groups.admin import bp as groups_admin_bp
from app.geppo.modules.groups.routes import bp as groups_bp
from app.geppo.modules.monthly_reports.routes import bp as monthly_reports_bp
from app.geppo.modules.articles.routes import bp as articles_bp


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    # CSV imports are small.
    app.config.setdefault("MAX_CONTENT_LENGTH", 5 * 1024 * 1024)

    # CSRF protection (minimal)
    from app.geppo.security import ensure_csrf_token, validate_csrf

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.context_processor
    def _inject_permissions() -> dict:
        from app.geppo.rbac import user_has_permission

        def has_perm(key: str) -> bool:
            return user_has_permission(getattr(g, "current_user", None), key)

        return {"has_perm": has_perm}

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%Y-%m-%d") -> str:
        if value is None:
            return "-"
        if hasattr(value, "strftime"):
            return value.strftime(format)
        return str(value)

    @app.template_filter("month_label")
    def _month_label_filter(value) -> str:
        if value is None:
            return "-"
        return value.strftime("%Y-%m")

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if not app.config.get("CSRF_ENABLED", True):
            return None
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Login posts come from a fresh session.
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                return render_template("errors/400.html", message="CSRF token missing or invalid."), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if app.config.get("MAIL_BACKEND") != "smtp":
            raise RuntimeError("MAIL_BACKEND must be smtp in production (memory outbox drops mail).")
        if not app.config.get("REPORT_NOTIFY_TO"):
            app.logger.error("REPORT_NOTIFY_TO is not set; ship notifications will not be sent.")

    init_db(app)
    init_mailer(app)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(tags_admin_bp, url_prefix="/admin")
    app.register_blueprint(groups_admin_bp, url_prefix="/admin")
    app.register_blueprint(monthly_reports_bp, url_prefix="/monthly_reports")
    app.register_blueprint(articles_bp, url_prefix="/articles")
    app.register_blueprint(groups_bp)

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        # Ensure stack trace shows in logs.
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return render_template("errors/500.html"), 500

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        return render_template("errors/403.html", missing_permission=missing), 403

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return render_template("errors/404.html"), 404

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        from flask import flash, redirect, url_for

        flash("File too large. Maximum size is 5MB.", "danger")
        referrer = request.referrer
        if referrer and referrer.startswith(request.host_url):
            return redirect(referrer), 302
        return redirect(url_for("admin.index")), 302

    # Startup logging
    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
