"""BusinessContext model.

Free-form notes and pasted documents the operator wants the AI drafter to
know about (pricing, services, tone). One row per user_id; the dashboard
only ever uses "default".
"""

import uuid

from crm.extensions import db


class BusinessContext(db.Model):
    __tablename__ = "business_context"

    DEFAULT_USER_ID = "default"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(db.String(100), unique=True, nullable=False)
    notes = db.Column(db.Text, nullable=False, default="")
    attachments = db.Column(
        db.JSON, nullable=False, default=list
    )  # [{name, content, type}]
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self):
        return {
            "notes": self.notes or "",
            "attachments": self.attachments or [],
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<BusinessContext {self.user_id}>"
