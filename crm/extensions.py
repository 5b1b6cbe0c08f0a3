"""
Deferred extension instances.

Created here, bound to the app in create_app() via init_app().
"""

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # per-route limits only
    storage_uri="memory://",
)


@login_manager.user_loader
def load_user(user_id):
    """Resolve the session identity. Imports lazily to avoid circular deps."""
    from crm.operator import Operator

    return Operator.get(user_id)


@login_manager.unauthorized_handler
def unauthorized():
    """API routes answer with JSON instead of redirecting to a login page."""
    from flask import jsonify

    return jsonify({"error": "Unauthorized"}), 401
