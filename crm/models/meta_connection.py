"""MetaConnection model — a Facebook page whose lead forms we ingest."""

import uuid

from crm.extensions import db


class MetaConnection(db.Model):
    __tablename__ = "meta_connections"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    page_id = db.Column(db.String(64), unique=True, nullable=False)
    page_name = db.Column(db.String(255), nullable=True)
    page_access_token = db.Column(db.Text, nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<MetaConnection {self.page_id} ({self.page_name})>"
