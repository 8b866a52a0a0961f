from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g, redirect, request, url_for
from sqlalchemy.orm import Session

from app.geppo.models import Permission, Role, User

PERMISSIONS = {
    "admin.view": "Admin: view back-office",
    "groups.manage": "Groups: create, edit, assign members",
    "tags.manage": "Tags: create, edit",
    "users.manage": "Users: create, edit",
    "audit.view": "Audit: view log",
}

ROLES = {
    "admin": ("Administrator", tuple(PERMISSIONS)),
    "operator": ("Operator", ("admin.view", "groups.manage", "tags.manage", "audit.view")),
    "member": ("Member", ()),
}


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active or not user.role:
        return False
    return any(perm.key == permission_key for perm in user.role.permissions)


def _login_redirect():
    nxt = request.full_path or request.path
    # Avoid trailing '?' from full_path when there is no query string.
    if nxt.endswith("?"):
        nxt = nxt[:-1]
    return redirect(url_for("auth.login_get", next=nxt))


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.is_active:
            return _login_redirect()
        return fn(*args, **kwargs)

    return wrapped


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated → redirect to login.
            if not user or not user.is_active:
                return _login_redirect()
            # Authenticated but unauthorized → 403
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def ensure_roles_and_permissions(s: Session) -> dict[str, Role]:
    """
    Idempotently create the permission and role rows. Returns roles by key.
    """
    perms: dict[str, Permission] = {}
    for key, name in PERMISSIONS.items():
        p = s.query(Permission).filter(Permission.key == key).one_or_none()
        if not p:
            p = Permission(key=key, name=name)
            s.add(p)
        perms[key] = p

    roles: dict[str, Role] = {}
    for key, (name, perm_keys) in ROLES.items():
        r = s.query(Role).filter(Role.key == key).one_or_none()
        if not r:
            r = Role(key=key, name=name)
            s.add(r)
        for pk in perm_keys:
            if perms[pk] not in r.permissions:
                r.permissions.append(perms[pk])
        roles[key] = r
    s.flush()
    return roles
