"""
Custom route decorators for access control.

- shared_secret_required: caller must present a configured secret, either
  as "Authorization: Bearer <secret>" / "?token=<secret>" (cron) or as an
  "X-API-Key" header (intake webhook).
"""

import hmac
from functools import wraps

from flask import current_app, jsonify, request


def _presented_secret(header):
    if header == "Authorization":
        auth = request.headers.get("Authorization", "")
        if auth.startswith("Bearer "):
            return auth[len("Bearer "):]
        return request.args.get("token")
    return request.headers.get(header)


def shared_secret_required(config_key, header="Authorization", optional=False):
    """Require the secret stored in app.config[config_key].

    Args:
        config_key: Config name holding the expected secret.
        header:     "Authorization" for bearer/query token, or a header name.
        optional:   If True and the secret isn't configured, let the request
                    through (intake webhook without an API key).
    """

    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            expected = current_app.config.get(config_key)
            if not expected:
                if optional:
                    return f(*args, **kwargs)
                return jsonify({"error": "Unauthorized"}), 401

            presented = _presented_secret(header) or ""
            if not hmac.compare_digest(presented.encode(), expected.encode()):
                return jsonify({"error": "Unauthorized"}), 401
            return f(*args, **kwargs)

        return decorated

    return decorator
