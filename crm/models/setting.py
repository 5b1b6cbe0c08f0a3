"""Setting model — process-wide key/value store.

Holds the shared Gmail credential under key "gmail_tokens":
    {access_token, refresh_token, expiry_date, email}

`version` increases on every write. Credential refreshes update the row
only if the version they read is still current (compare-and-swap), so two
requests refreshing at once cannot both overwrite the token.
"""

import uuid

from crm.extensions import db


class Setting(db.Model):
    __tablename__ = "settings"

    GMAIL_TOKENS = "gmail_tokens"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    key = db.Column(db.String(100), unique=True, nullable=False)
    value = db.Column(db.JSON, nullable=False, default=dict)
    version = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self):
        return f"<Setting {self.key} v{self.version}>"
