"""LeadActivity model — per-lead activity log.

Append-only timeline: emails sent, calls, notes, stage changes made by the
sweeps, and inbound Instagram/Messenger messages.
"""

import uuid

from crm.extensions import db


class LeadActivity(db.Model):
    __tablename__ = "lead_activities"

    TYPES = ["email", "call", "meeting", "note", "stage_change", "message"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    lead_id = db.Column(
        db.String(36),
        db.ForeignKey("leads.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    activity_type = db.Column(
        db.String(50), nullable=False
    )  # email | call | meeting | note | stage_change | message
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    lead = db.relationship(
        "Lead",
        backref=db.backref(
            "activities",
            lazy="dynamic",
            cascade="all, delete-orphan",
            order_by="LeadActivity.created_at.desc()",
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "lead_id": self.lead_id,
            "type": self.activity_type,
            "description": self.description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<LeadActivity {self.activity_type} on {self.lead_id}>"
