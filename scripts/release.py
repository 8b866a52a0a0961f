"""
Deploy helper: migrate, seed, and optionally hand the process over to gunicorn.

Usage:
  python scripts/release.py            # alembic upgrade head + seed roles/admin
  python scripts/release.py --serve    # same, then exec gunicorn on $PORT
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

DEFAULT_PORT = 8080


def _database_url() -> str:
    db_url = (os.environ.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("DATABASE_URL must be set for a release.")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to release against SQLite in production.")
    return db_url


def migrate(db_url: str) -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url.replace("%", "%%"))
    command.upgrade(cfg, "head")


def run_release() -> None:
    db_url = _database_url()
    print("Migrating database...", flush=True)
    migrate(db_url)

    from scripts import init_db

    print("Seeding roles and admin account...", flush=True)
    init_db.seed_only(database_url=db_url)
    print("Release complete.", flush=True)


def _port() -> int:
    raw = (os.environ.get("PORT") or "").strip()
    if not raw:
        return DEFAULT_PORT
    port = int(raw)
    if not 1 <= port <= 65535:
        raise ValueError(f"PORT out of range: {port}")
    return port


def serve(port: int) -> None:
    # exec so gunicorn receives signals directly
    os.execvp(
        "gunicorn",
        [
            "gunicorn",
            "app.wsgi:app",
            "--bind", f"0.0.0.0:{port}",
            "--workers", os.environ.get("WEB_CONCURRENCY", "2"),
            "--access-logfile", "-",
            "--error-logfile", "-",
        ],
    )


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--serve", action="store_true", help="start gunicorn after the release steps")
    args = parser.parse_args(argv)

    try:
        port = _port() if args.serve else None
        run_release()
    except (RuntimeError, ValueError) as e:
        print(f"Release failed: {e}", file=sys.stderr, flush=True)
        sys.exit(1)

    if port is not None:
        print(f"Starting gunicorn on 0.0.0.0:{port}", flush=True)
        serve(port)


if __name__ == "__main__":
    main()
