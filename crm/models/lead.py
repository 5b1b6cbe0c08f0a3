"""Lead model.

Tracks a prospective customer through the sales pipeline.
Pipeline: contacted_1 -> contacted_2 -> interested / onboarding_sent -> converted
Dead branches: not_interested, no_response, not_qualified (archived)
Side branches: on_hold, called
"""

import uuid

from crm.extensions import db


class Lead(db.Model):
    __tablename__ = "leads"

    # -- Valid stages, in pipeline order --
    STAGES = [
        "contacted_1",
        "contacted_2",
        "called",
        "interested",
        "onboarding_sent",
        "converted",
        "on_hold",
        "not_interested",
        "no_response",
        "not_qualified",
    ]

    # Stages that hide a lead from the default view.
    ARCHIVED_STAGES = frozenset({"not_interested", "no_response", "not_qualified"})

    # Stages from which an inbound DM counts as a reply worth advancing on.
    EARLY_CONTACT_STAGES = frozenset({"contacted_1", "contacted_2", "called", "no_response"})

    SOURCES = [
        "website",
        "linkedin",
        "referral",
        "email",
        "instagram",
        "meta_ads",
        "google_ads",
        "other",
    ]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False, index=True)  # lower-cased
    company = db.Column(db.String(255), nullable=False, default="")
    phone = db.Column(db.String(50), nullable=True)
    stage = db.Column(db.String(50), nullable=False, default="contacted_1", index=True)
    source = db.Column(db.String(50), nullable=False, default="website")
    owner = db.Column(db.String(255), nullable=True)
    conversion_probability = db.Column(db.Integer, nullable=False, default=20)
    revenue = db.Column(db.Numeric(12, 2), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    next_action = db.Column(db.Text, nullable=True)
    archived = db.Column(db.Boolean, nullable=False, default=False, index=True)
    last_contacted = db.Column(db.DateTime(timezone=True), nullable=True)
    converted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # External identities. Unique so concurrent webhook deliveries
    # cannot create the same lead twice.
    meta_lead_id = db.Column(db.String(64), unique=True, nullable=True)
    instagram_id = db.Column(db.String(64), unique=True, nullable=True)
    facebook_id = db.Column(db.String(64), unique=True, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "company": self.company,
            "phone": self.phone,
            "stage": self.stage,
            "source": self.source,
            "owner": self.owner,
            "conversion_probability": self.conversion_probability,
            "revenue": float(self.revenue) if self.revenue is not None else None,
            "notes": self.notes,
            "next_action": self.next_action,
            "archived": self.archived,
            "last_contacted": _iso(self.last_contacted),
            "converted_at": _iso(self.converted_at),
            "meta_lead_id": self.meta_lead_id,
            "instagram_id": self.instagram_id,
            "facebook_id": self.facebook_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Lead {self.email} ({self.stage})>"


def _iso(value):
    return value.isoformat() if value is not None else None
