# roster_app/utils/permissions.py

from functools import wraps
from http import HTTPStatus

from flask import jsonify
from flask_login import current_user


def can_manage_imports(user):
    """Check whether a user may preview, run or cancel roster imports"""
    if not user or not user.is_authenticated:
        return False
    if not getattr(user, "is_active", False):
        return False
    return bool(getattr(user, "is_admin", False))


def get_current_actor_id(default="system"):
    """Identifier recorded as the actor on history and change log rows"""
    if current_user and current_user.is_authenticated:
        return str(current_user.id)
    return default


def import_admin_required(f):
    """Decorator for JSON endpoints restricted to import administrators"""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            return jsonify({"error": "Authentication required."}), HTTPStatus.UNAUTHORIZED
        if not can_manage_imports(current_user):
            return jsonify({"error": "Administrator privileges required."}), HTTPStatus.FORBIDDEN
        return f(*args, **kwargs)

    return decorated_function
