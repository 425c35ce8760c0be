"""Route decorators for the admin JSON API."""

from functools import wraps

from flask import jsonify
from flask_login import current_user, login_required


def admin_required(f):
    """Require login + is_admin flag. Non-admins get a JSON 403."""

    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if not current_user.is_admin:
            return jsonify(error="forbidden", message="Admin access required."), 403
        return f(*args, **kwargs)

    return decorated
