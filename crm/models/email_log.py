"""EmailLog model — every email sent through the app (manual or follow-up)."""

import uuid

from crm.extensions import db


class EmailLog(db.Model):
    __tablename__ = "email_logs"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    lead_id = db.Column(
        db.String(36),
        db.ForeignKey("leads.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    subject = db.Column(db.String(998), nullable=True)
    body = db.Column(db.Text, nullable=True)
    gmail_message_id = db.Column(db.String(255), nullable=True)
    thread_id = db.Column(db.String(255), nullable=True)
    is_sent = db.Column(db.Boolean, nullable=False, default=True)
    sent_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now(), index=True
    )

    def __repr__(self):
        return f"<EmailLog {self.gmail_message_id} lead={self.lead_id}>"
