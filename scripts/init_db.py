"""
Seed roles, permissions and the first admin account.

Safe to re-run: existing rows are reused and an existing admin keeps its
password. The account comes from ADMIN_EMAIL / ADMIN_NAME / ADMIN_PASSWORD.

Usage:
  python scripts/init_db.py
"""
import os
import sys
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from werkzeug.security import generate_password_hash

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.geppo.models import User  # noqa: E402
from app.geppo.rbac import ensure_roles_and_permissions  # noqa: E402


@contextmanager
def script_session(db_url: str):
    engine = create_engine(db_url, future=True, pool_pre_ping=True)
    s: Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()


def seed_only(*, database_url: str | None = None) -> bool:
    """Returns True when the admin account was created by this run."""
    email = (os.environ.get("ADMIN_EMAIL") or "admin@example.com").strip().lower()
    name = (os.environ.get("ADMIN_NAME") or "Administrator").strip()
    password = os.environ.get("ADMIN_PASSWORD") or "change-me"
    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///geppo.db").strip()

    with script_session(db_url) as s:
        roles = ensure_roles_and_permissions(s)
        admin = s.query(User).filter(User.email == email).one_or_none()
        created = admin is None
        if created:
            admin = User(name=name, email=email, password_hash=generate_password_hash(password))
            s.add(admin)
        admin.role = roles["admin"]
        admin.is_active = True

    print(f"{'Created' if created else 'Kept'} admin account {email}.")
    return created


def main() -> None:
    seed_only()


if __name__ == "__main__":
    main()
