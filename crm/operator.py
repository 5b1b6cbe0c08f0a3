"""Operator identity.

The dashboard has a single operator who signs in with the master PIN.
There is no users table; Flask-Login only needs something with an id
to put in the session cookie.
"""

import hmac

from flask import current_app
from flask_login import UserMixin

OPERATOR_ID = "operator"


class Operator(UserMixin):
    id = OPERATOR_ID

    @classmethod
    def get(cls, user_id):
        """Return the operator for a session id, or None for anything else."""
        if user_id == OPERATOR_ID:
            return cls()
        return None

    @staticmethod
    def check_pin(pin):
        """Constant-time comparison against the configured MASTER_PIN."""
        expected = current_app.config.get("MASTER_PIN") or ""
        if not expected or not pin:
            return False
        return hmac.compare_digest(str(pin), expected)

    def __repr__(self):
        return "<Operator>"
