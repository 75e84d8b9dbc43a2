"""Authorization helpers for role-based access control."""

from __future__ import annotations

from functools import wraps
from typing import Callable

from flask import abort
from flask_login import current_user


def roles_required(*roles: str) -> Callable:
    """Protect a view based on :data:`flask_login.current_user`'s role.

    Unauthenticated callers receive ``401``. Authenticated users whose
    ``role`` is not listed in ``roles`` receive ``403``.

    Args:
        *roles: Acceptable values for :attr:`UserAccount.role`.

    Returns:
        Callable: A decorator enforcing the role restrictions on the wrapped
        view function.
    """

    allowed_roles = set(roles)

    def decorator(view: Callable) -> Callable:
        @wraps(view)
        def wrapped(*args, **kwargs):
            if not current_user.is_authenticated:
                abort(401)

            user_role = getattr(current_user, "role", None)
            if user_role is None or (allowed_roles and user_role not in allowed_roles):
                abort(403)

            return view(*args, **kwargs)

        return wrapped

    return decorator
