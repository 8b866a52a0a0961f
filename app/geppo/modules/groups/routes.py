from flask import Blueprint, render_template

from app.geppo.db import db_session
from app.geppo.modules.groups.service import active_groups
from app.geppo.rbac import require_login

bp = Blueprint("groups", __name__)


@bp.get("/groups")
@require_login
def index():
    groups = active_groups(db_session()).all()
    return render_template("groups/index.html", groups=groups)
